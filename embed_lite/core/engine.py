"""Abstract base class for inference engines."""

from abc import ABC, abstractmethod
from typing import Any, Dict, Sequence

import torch


class Engine(ABC):
    """Capability interface of an inference engine.

    An engine opens a handle bound to one model and a fixed input/output name
    contract, runs that handle over named tensors, and closes it. The
    orchestration layer only talks to engines through this interface, so it
    can be exercised with an in-memory engine.
    """

    # Whether ``run`` may be called concurrently on one handle.
    thread_safe: bool = False

    @abstractmethod
    def open(
        self,
        model_path: str,
        input_names: Sequence[str],
        output_names: Sequence[str],
    ) -> Any:
        """Open an execution context for a model.

        Args:
            model_path: Path to the model
            input_names: Input tensor names, in order
            output_names: Output tensor names, in order

        Returns:
            Opaque engine handle
        """
        pass

    @abstractmethod
    def run(
        self,
        handle: Any,
        inputs: Dict[str, torch.Tensor],
        outputs: Dict[str, torch.Tensor],
    ) -> None:
        """Run inference, filling ``outputs`` in place.

        Args:
            handle: Handle returned by ``open``
            inputs: Input tensors by name
            outputs: Pre-allocated output tensors by name
        """
        pass

    @abstractmethod
    def close(self, handle: Any) -> None:
        """Release the execution context behind ``handle``."""
        pass
