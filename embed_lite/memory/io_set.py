"""
IOSet: the input and output buffers bound to one inference call.
"""

import threading
from typing import Dict, List

import torch

from embed_lite.memory.tensor_buffer import BufferKind, TensorBuffer


class IOSet:
    """Ordered input and output buffers for a single inference call.

    The IOSet owns every buffer added to it. ``release`` releases each buffer
    exactly once and is safe to call more than once, so a partially built set
    can be released from an error path. Use it as a context manager to tie the
    buffers' lifetime to a block:

        with builder.build_batch(chunks) as io_set:
            session.run(io_set)
    """

    def __init__(self) -> None:
        self.inputs: List[TensorBuffer] = []
        self.outputs: List[TensorBuffer] = []
        self._released = False
        self._lock = threading.Lock()

    def add_input(self, buffer: TensorBuffer) -> None:
        if buffer.kind is not BufferKind.INPUT:
            raise ValueError(f"Buffer '{buffer.name}' is not an input buffer")
        self.inputs.append(buffer)

    def add_output(self, buffer: TensorBuffer) -> None:
        if buffer.kind is not BufferKind.OUTPUT:
            raise ValueError(f"Buffer '{buffer.name}' is not an output buffer")
        self.outputs.append(buffer)

    @property
    def input_names(self) -> List[str]:
        return [buffer.name for buffer in self.inputs]

    @property
    def output_names(self) -> List[str]:
        return [buffer.name for buffer in self.outputs]

    def input_tensors(self) -> Dict[str, torch.Tensor]:
        """Map of input name to backing tensor, in contract order."""
        return {buffer.name: buffer.tensor for buffer in self.inputs}

    def output_tensors(self) -> Dict[str, torch.Tensor]:
        """Map of output name to backing tensor, in contract order."""
        return {buffer.name: buffer.tensor for buffer in self.outputs}

    def output(self, name: str) -> TensorBuffer:
        """Get an output buffer by name.

        Raises:
            KeyError: If no output buffer has that name.
        """
        for buffer in self.outputs:
            if buffer.name == name:
                return buffer
        raise KeyError(name)

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        """Release every buffer in the set."""
        with self._lock:
            if self._released:
                return
            self._released = True

        for buffer in self.inputs + self.outputs:
            buffer.release()

    def __enter__(self) -> "IOSet":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    def __len__(self) -> int:
        return len(self.inputs) + len(self.outputs)
