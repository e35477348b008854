"""Chunker for splitting long token sequences into bounded-length windows."""

from dataclasses import dataclass
from typing import List, Sequence, Tuple, Union

import torch

TokenIds = Union[torch.Tensor, Sequence[int]]


def as_token_tensor(ids: Union["Chunk", TokenIds]) -> torch.Tensor:
    """Convert token IDs to a 1-D int64 tensor.

    Tensors that are already int64 are returned as-is (no copy).

    Raises:
        ValueError: If the IDs are not one-dimensional
    """
    if isinstance(ids, Chunk):
        return ids.ids

    if isinstance(ids, torch.Tensor):
        tensor = ids.to(torch.int64)
    else:
        tensor = torch.as_tensor(list(ids), dtype=torch.int64)

    if tensor.dim() != 1:
        raise ValueError(f"Token IDs must be one-dimensional, got shape {tuple(tensor.shape)}")
    return tensor


@dataclass(frozen=True, eq=False)
class Chunk:
    """Contiguous window of a parent token sequence.

    A chunk owns no memory: ``ids`` is a view into ``source``.
    """
    source: torch.Tensor
    start: int
    end: int

    @property
    def ids(self) -> torch.Tensor:
        return self.source[self.start:self.end]

    def __len__(self) -> int:
        return self.end - self.start


class Chunker:
    """Splits token sequences into consecutive non-overlapping chunks.

    Every chunk has exactly ``max_seq_len`` tokens except possibly the last.
    Chunking performs no copying and no padding.

    Args:
        max_seq_len: Maximum tokens per chunk (default: 512)
    """

    def __init__(self, max_seq_len: int = 512):
        """Initialize Chunker.

        Args:
            max_seq_len: Maximum tokens per chunk (default: 512)

        Raises:
            ValueError: If max_seq_len is zero or negative
        """
        if max_seq_len <= 0:
            raise ValueError(f"Chunk size must be positive, got {max_seq_len}")

        self.max_seq_len = max_seq_len

    def split(self, ids: TokenIds) -> List[Chunk]:
        """Split a token sequence into chunks.

        Args:
            ids: Token IDs to split

        Returns:
            List of chunks in sequence order. Empty input yields an empty list.
        """
        source = as_token_tensor(ids)
        seq_len = source.size(0)

        return [
            Chunk(source, start, min(start + self.max_seq_len, seq_len))
            for start in range(0, seq_len, self.max_seq_len)
        ]


def chunk_sequence(ids: TokenIds, max_seq_len: int) -> List[Chunk]:
    """Split ``ids`` into chunks of at most ``max_seq_len`` tokens."""
    return Chunker(max_seq_len).split(ids)


def partition(num_items: int, width: int) -> List[Tuple[int, int]]:
    """Partition ``range(num_items)`` into consecutive ``[start, end)`` ranges.

    Args:
        num_items: Number of items to partition
        width: Maximum items per range; the last range may be shorter

    Returns:
        List of (start, end) pairs covering every index once, in order

    Raises:
        ValueError: If width is zero or negative
    """
    if width <= 0:
        raise ValueError(f"Sub-batch size must be positive, got {width}")

    return [(start, min(start + width, num_items)) for start in range(0, num_items, width)]
