"""
Chunking and tensor construction for batched inference.

Provides:
- Chunk: View of a bounded-length window of a token sequence
- Chunker: Splits long token sequences into chunks
- TensorBuilder: Padded input / empty output buffers for one inference call
"""

from embed_lite.batch.chunker import Chunk, Chunker, chunk_sequence, partition
from embed_lite.batch.tensor_builder import TensorBuilder

__all__ = ["Chunk", "Chunker", "chunk_sequence", "partition", "TensorBuilder"]
