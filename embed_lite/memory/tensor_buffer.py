"""
TensorBuffer: a shaped tensor exclusively owned until released.
"""

import threading
from enum import Enum
from typing import TYPE_CHECKING, Optional, Tuple

import torch

if TYPE_CHECKING:
    from embed_lite.memory.tensor_allocator import TensorAllocator


class BufferKind(Enum):
    """Role of a buffer in an inference call."""

    INPUT = "input"  # Filled by the caller before the call
    OUTPUT = "output"  # Allocated empty, filled by the engine


class TensorBuffer:
    """Rectangular buffer handed to or filled by the inference engine.

    A buffer is owned by whoever created it (normally through an IOSet) until
    ``release`` is called. Release returns the buffer to its allocator exactly
    once; later calls are no-ops.

    Attributes:
        buffer_id: Allocator-assigned identifier.
        name: Tensor name in the engine's input/output contract.
        kind: Whether the buffer is an input or an output.
        shape: Buffer dimensions.
    """

    def __init__(
        self,
        buffer_id: int,
        name: str,
        kind: BufferKind,
        tensor: torch.Tensor,
        allocator: Optional["TensorAllocator"] = None,
    ) -> None:
        self.buffer_id = buffer_id
        self.name = name
        self.kind = kind
        self.shape: Tuple[int, ...] = tuple(tensor.shape)
        self.dtype = tensor.dtype
        self.nbytes = tensor.numel() * tensor.element_size()
        self._tensor: Optional[torch.Tensor] = tensor
        self._allocator = allocator
        self._lock = threading.Lock()

    @property
    def tensor(self) -> torch.Tensor:
        """Backing tensor. Raises RuntimeError once the buffer is released."""
        if self._tensor is None:
            raise RuntimeError(f"Buffer '{self.name}' has been released")
        return self._tensor

    @property
    def released(self) -> bool:
        return self._tensor is None

    def release(self) -> bool:
        """Release the buffer.

        Returns:
            True if this call released it, False if it was already released.
        """
        with self._lock:
            if self._tensor is None:
                return False
            self._tensor = None

        if self._allocator is not None:
            self._allocator.free(self)
        return True

    def __repr__(self) -> str:
        state = "released" if self.released else "live"
        return (
            f"TensorBuffer(id={self.buffer_id}, name={self.name!r}, "
            f"kind={self.kind.value}, shape={self.shape}, {state})"
        )
