"""
Tensor buffer management for inference calls.

Provides:
- TensorBuffer: Shaped tensor with explicit ownership and release
- TensorAllocator: Creates buffers and tracks live allocations
- IOSet: Input/output buffers bound to one inference call
"""

from embed_lite.memory.io_set import IOSet
from embed_lite.memory.tensor_allocator import TensorAllocator
from embed_lite.memory.tensor_buffer import BufferKind, TensorBuffer

__all__ = ["BufferKind", "TensorBuffer", "TensorAllocator", "IOSet"]
