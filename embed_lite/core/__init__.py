"""
Inference execution and embedding orchestration.

Provides:
- Engine: Capability interface of an inference engine (open/run/close)
- OnnxEngine: onnxruntime-backed engine
- InferenceSession: Owns the engine handle and serializes runs when needed
- EmbeddingService: Sequential and concurrent batched embedding generation
"""

from embed_lite.core.embedding_service import EmbeddingService, ServiceState
from embed_lite.core.engine import Engine
from embed_lite.core.session import InferenceSession

__all__ = ["Engine", "InferenceSession", "EmbeddingService", "ServiceState"]
