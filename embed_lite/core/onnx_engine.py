"""
onnxruntime-backed inference engine.

Inputs and outputs are bound with an IOBinding directly onto the torch
buffers built by the TensorBuilder, so the engine reads the padded IDs in
place and writes its outputs into the pre-allocated output buffers.
onnxruntime supports concurrent ``Run`` calls on one InferenceSession; each
call uses its own IOBinding.
"""

import os
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import numpy as np
import onnxruntime as ort
import structlog
import torch

from embed_lite.core.engine import Engine
from embed_lite.errors import ConfigurationError, EngineError

logger = structlog.get_logger("embed_lite.core.onnx_engine")

_NUMPY_TYPES = {
    torch.int64: np.int64,
    torch.int32: np.int32,
    torch.float32: np.float32,
    torch.float16: np.float16,
}


@dataclass
class OnnxHandle:
    """Open onnxruntime session and its name contract."""
    session: Optional[ort.InferenceSession]
    input_names: List[str]
    output_names: List[str]


class OnnxEngine(Engine):
    """Engine backed by an ``onnxruntime.InferenceSession``.

    Args:
        providers: Execution providers in priority order
        intra_op_num_threads: Intra-op thread count, or None for the default
    """

    thread_safe = True

    def __init__(
        self,
        providers: Optional[Sequence[str]] = None,
        intra_op_num_threads: Optional[int] = None,
    ) -> None:
        self.providers = list(providers) if providers else ["CPUExecutionProvider"]
        self.intra_op_num_threads = intra_op_num_threads

    def open(
        self,
        model_path: str,
        input_names: Sequence[str],
        output_names: Sequence[str],
    ) -> OnnxHandle:
        if not model_path:
            raise ConfigurationError("model path is empty")
        if not os.path.isfile(model_path):
            raise ConfigurationError(f"model file not found at {model_path}")

        options = ort.SessionOptions()
        options.graph_optimization_level = ort.GraphOptimizationLevel.ORT_ENABLE_ALL
        if self.intra_op_num_threads is not None:
            options.intra_op_num_threads = self.intra_op_num_threads

        try:
            session = ort.InferenceSession(
                model_path, sess_options=options, providers=self.providers
            )
        except Exception as exc:
            raise EngineError(f"failed to create ONNX session: {exc}") from exc

        model_inputs = {node.name for node in session.get_inputs()}
        model_outputs = {node.name for node in session.get_outputs()}
        missing = [name for name in input_names if name not in model_inputs]
        missing += [name for name in output_names if name not in model_outputs]
        if missing:
            del session
            raise ConfigurationError(f"model {model_path} does not declare tensors {missing}")

        logger.info(
            "onnx session created",
            model_path=model_path,
            providers=session.get_providers(),
        )
        return OnnxHandle(session, list(input_names), list(output_names))

    def run(
        self,
        handle: OnnxHandle,
        inputs: Dict[str, torch.Tensor],
        outputs: Dict[str, torch.Tensor],
    ) -> None:
        if handle.session is None:
            raise EngineError("ONNX session is closed")

        binding = handle.session.io_binding()
        for name in handle.input_names:
            self._bind(binding.bind_input, name, inputs[name])
        for name in handle.output_names:
            self._bind(binding.bind_output, name, outputs[name])

        handle.session.run_with_iobinding(binding)

    def close(self, handle: OnnxHandle) -> None:
        handle.session = None

    @staticmethod
    def _bind(bind, name: str, tensor: torch.Tensor) -> None:
        if tensor.device.type != "cpu" or not tensor.is_contiguous():
            raise EngineError(f"tensor '{name}' must be a contiguous CPU tensor")
        element_type = _NUMPY_TYPES.get(tensor.dtype)
        if element_type is None:
            raise EngineError(f"unsupported dtype {tensor.dtype} for tensor '{name}'")

        bind(name, "cpu", 0, element_type, list(tensor.shape), tensor.data_ptr())
