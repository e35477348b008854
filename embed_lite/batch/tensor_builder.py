"""
Tensor construction for batched inference.

The TensorBuilder turns one or more token-ID chunks into an IOSet holding:
- ``input_ids``: padded IDs, shape [batch_size, seq_len], int64
- ``attention_mask``: 1 for real tokens, 0 for padding, shape [batch_size, seq_len]
- ``token_embeddings``: empty output, shape [batch_size, seq_len, embed_dim]
- ``sentence_embedding``: empty output, shape [batch_size, embed_dim]

Chunks longer than ``seq_len`` are truncated: only the first ``seq_len`` IDs
are encoded and the rest are dropped without raising.
"""

from typing import Optional, Sequence

import structlog
import torch

from embed_lite.batch.chunker import Chunk, TokenIds, as_token_tensor
from embed_lite.errors import AllocationError
from embed_lite.memory.io_set import IOSet
from embed_lite.memory.tensor_allocator import TensorAllocator
from embed_lite.memory.tensor_buffer import BufferKind

logger = structlog.get_logger("embed_lite.batch.tensor_builder")

INPUT_IDS = "input_ids"
ATTENTION_MASK = "attention_mask"
TOKEN_EMBEDDINGS = "token_embeddings"
SENTENCE_EMBEDDING = "sentence_embedding"

INPUT_NAMES = (INPUT_IDS, ATTENTION_MASK)
OUTPUT_NAMES = (TOKEN_EMBEDDINGS, SENTENCE_EMBEDDING)


class TensorBuilder:
    """Builds padded input buffers and empty output buffers for the engine.

    Attributes:
        seq_len: Fixed sequence length every chunk is padded to.
        embed_dim: Embedding dimension of the outputs.
        allocator: Allocator that owns buffer accounting.
    """

    def __init__(
        self,
        seq_len: int,
        embed_dim: int,
        allocator: Optional[TensorAllocator] = None,
    ) -> None:
        """Initialize TensorBuilder.

        Args:
            seq_len: Fixed sequence length every chunk is padded to.
            embed_dim: Embedding dimension of the outputs.
            allocator: Allocator to create buffers with. A private one is
                created when omitted.

        Raises:
            ValueError: If seq_len or embed_dim is not positive.
        """
        if seq_len <= 0:
            raise ValueError(f"seq_len must be positive, got {seq_len}")
        if embed_dim <= 0:
            raise ValueError(f"embed_dim must be positive, got {embed_dim}")

        self.seq_len = seq_len
        self.embed_dim = embed_dim
        self.allocator = allocator if allocator is not None else TensorAllocator()

    def build_single(self, ids: TokenIds) -> IOSet:
        """Build an IOSet for one token sequence (batch size 1).

        Args:
            ids: Token IDs of the sequence

        Returns:
            IOSet owning all four buffers
        """
        return self.build_batch([ids])

    def build_batch(self, chunks: Sequence[TokenIds]) -> IOSet:
        """Build an IOSet for a batch of chunks.

        Args:
            chunks: Token-ID chunks, one row each

        Returns:
            IOSet owning all four buffers

        Raises:
            AllocationError: If the batch is empty or a buffer cannot be
                created. Buffers already created by this call are released
                before the error propagates.
        """
        batch_size = len(chunks)
        if batch_size == 0:
            raise AllocationError("cannot build tensors for an empty batch")

        io_set = IOSet()
        try:
            input_ids = self.allocator.allocate(
                INPUT_IDS, (batch_size, self.seq_len), torch.int64, BufferKind.INPUT
            )
            io_set.add_input(input_ids)

            attention_mask = self.allocator.allocate(
                ATTENTION_MASK, (batch_size, self.seq_len), torch.int64, BufferKind.INPUT
            )
            io_set.add_input(attention_mask)

            for row, chunk in enumerate(chunks):
                self._fill_row(input_ids.tensor, attention_mask.tensor, row, chunk)

            io_set.add_output(
                self.allocator.allocate(
                    TOKEN_EMBEDDINGS,
                    (batch_size, self.seq_len, self.embed_dim),
                    torch.float32,
                    BufferKind.OUTPUT,
                )
            )
            io_set.add_output(
                self.allocator.allocate(
                    SENTENCE_EMBEDDING,
                    (batch_size, self.embed_dim),
                    torch.float32,
                    BufferKind.OUTPUT,
                )
            )
        except Exception:
            io_set.release()
            raise

        return io_set

    def _fill_row(
        self,
        input_ids: torch.Tensor,
        attention_mask: torch.Tensor,
        row: int,
        chunk: TokenIds,
    ) -> None:
        """Copy one chunk into row ``row``; padding stays zero."""
        ids = as_token_tensor(chunk)
        if ids.numel() > self.seq_len:
            logger.debug(
                "truncating chunk",
                row=row,
                length=ids.numel(),
                seq_len=self.seq_len,
                start=chunk.start if isinstance(chunk, Chunk) else None,
            )
            ids = ids[: self.seq_len]

        length = ids.numel()
        input_ids[row, :length] = ids
        attention_mask[row, :length] = 1
