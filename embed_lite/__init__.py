"""
embed_lite: chunked, batched sentence embeddings over an inference engine.

This package turns a long token-ID sequence into a list of fixed-dimension
embedding vectors:
- Chunking of token sequences into bounded-length windows
- Padded input / attention-mask tensor construction
- Sequential and concurrent batched execution against an inference engine
- Deterministic release of every tensor buffer and of the engine session
"""

from embed_lite.config import EmbeddingConfig, get_config
from embed_lite.core.embedding_service import EmbeddingService, ServiceState
from embed_lite.errors import (
    AllocationError,
    ConfigurationError,
    EmbeddingError,
    EngineError,
    ShapeAssertionError,
)

__version__ = "0.1.0"
__author__ = "embed-lite contributors"

__all__ = [
    "EmbeddingConfig",
    "get_config",
    "EmbeddingService",
    "ServiceState",
    "EmbeddingError",
    "ConfigurationError",
    "AllocationError",
    "EngineError",
    "ShapeAssertionError",
]
