"""
Tensor allocator with live-buffer accounting.

This module implements a TensorAllocator that creates the input and output
buffers for inference calls and keeps track of every buffer that has not been
released yet. The accounting makes leaks observable: once all calls have
finished, ``live`` must be back to zero.

The allocator supports:
- Zero-filled (input) and uninitialized (output) buffer allocation
- Optional cap on live bytes, failing allocations that would exceed it
- Allocation statistics tracking
- Thread-safe operations
"""

import threading
from typing import Dict, Optional, Sequence

import structlog
import torch

from embed_lite.errors import AllocationError
from embed_lite.memory.tensor_buffer import BufferKind, TensorBuffer

logger = structlog.get_logger("embed_lite.memory.tensor_allocator")


class TensorAllocator:
    """Creates TensorBuffers and tracks the ones still alive.

    Attributes:
        device: Device buffers are created on.
        max_bytes: Cap on live bytes, or None for no cap.
    """

    def __init__(self, device: str = "cpu", max_bytes: Optional[int] = None) -> None:
        """Initialize TensorAllocator.

        Args:
            device: Device for buffer storage.
            max_bytes: Maximum number of live bytes. Allocations that would
                exceed it raise AllocationError.
        """
        if max_bytes is not None and max_bytes <= 0:
            raise ValueError(f"max_bytes must be positive, got {max_bytes}")

        self.device = device
        self.max_bytes = max_bytes

        # Live buffers: buffer_id -> nbytes
        self.live_buffers: Dict[int, int] = {}

        self._next_id = 0
        self._allocated = 0
        self._released = 0
        self._live_bytes = 0
        self._peak_bytes = 0

        # Thread safety lock
        self.lock = threading.Lock()

    def allocate(
        self,
        name: str,
        shape: Sequence[int],
        dtype: torch.dtype,
        kind: BufferKind,
    ) -> TensorBuffer:
        """Allocate a buffer.

        Input buffers are zero-filled so padding positions hold a zero ID and a
        zero mask entry. Output buffers are left uninitialized for the engine.

        Args:
            name: Tensor name in the engine contract.
            shape: Buffer dimensions.
            dtype: Element type.
            kind: Input or output.

        Returns:
            The new buffer, registered as live.

        Raises:
            AllocationError: If the shape is invalid, torch cannot allocate
                the memory, or the live-byte cap would be exceeded.
        """
        shape = tuple(int(dim) for dim in shape)
        if any(dim < 0 for dim in shape):
            raise AllocationError(f"invalid shape {shape} for tensor '{name}'")

        numel = 1
        for dim in shape:
            numel *= dim
        nbytes = numel * torch.empty((), dtype=dtype).element_size()

        with self.lock:
            if self.max_bytes is not None and self._live_bytes + nbytes > self.max_bytes:
                logger.warning(
                    "allocation cap reached",
                    tensor=name,
                    requested=nbytes,
                    live_bytes=self._live_bytes,
                    max_bytes=self.max_bytes,
                )
                raise AllocationError(
                    f"cannot allocate {nbytes} bytes for tensor '{name}': "
                    f"{self._live_bytes} of {self.max_bytes} bytes in use"
                )
            # Reserve before allocating so concurrent callers see the bytes.
            buffer_id = self._next_id
            self._next_id += 1
            self._live_bytes += nbytes

        try:
            if kind is BufferKind.INPUT:
                tensor = torch.zeros(shape, dtype=dtype, device=self.device)
            else:
                tensor = torch.empty(shape, dtype=dtype, device=self.device)
        except (RuntimeError, ValueError) as exc:
            with self.lock:
                self._live_bytes -= nbytes
            raise AllocationError(f"failed to create tensor '{name}': {exc}") from exc

        with self.lock:
            self.live_buffers[buffer_id] = nbytes
            self._allocated += 1
            self._peak_bytes = max(self._peak_bytes, self._live_bytes)

        return TensorBuffer(buffer_id, name, kind, tensor, allocator=self)

    def free(self, buffer: TensorBuffer) -> None:
        """Return a buffer's accounting to the allocator.

        Called by ``TensorBuffer.release``. Unknown or already-freed buffers
        are ignored.

        Args:
            buffer: Buffer being released.
        """
        with self.lock:
            nbytes = self.live_buffers.pop(buffer.buffer_id, None)
            if nbytes is None:
                return
            self._live_bytes -= nbytes
            self._released += 1

    def get_stats(self) -> Dict[str, int]:
        """Get allocator statistics.

        Returns:
            Dictionary with keys:
            - allocated: Buffers created so far
            - released: Buffers released so far
            - live: Buffers not yet released
            - live_bytes: Bytes held by live buffers
            - peak_bytes: Highest live_bytes observed
        """
        with self.lock:
            return {
                "allocated": self._allocated,
                "released": self._released,
                "live": len(self.live_buffers),
                "live_bytes": self._live_bytes,
                "peak_bytes": self._peak_bytes,
            }
