"""
Pytest configuration and shared fixtures for embed_lite tests.

This module provides reusable fixtures for testing, including:
- StubEngine: deterministic in-memory inference engine
- Small service configuration (seq_len=8, embed_dim=4)
- Opened EmbeddingService wired to a stub engine and a tracked allocator
- CPU device enforcement
"""

import os
import threading
import time
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

import pytest
import torch

from embed_lite.config import EmbeddingConfig
from embed_lite.core.embedding_service import EmbeddingService
from embed_lite.core.engine import Engine
from embed_lite.memory.tensor_allocator import TensorAllocator


# Force CPU-only testing by disabling CUDA
os.environ["CUDA_VISIBLE_DEVICES"] = ""

SEQ_LEN = 8
EMBED_DIM = 4


def stub_sentence_embedding(input_ids: torch.Tensor, attention_mask: torch.Tensor) -> torch.Tensor:
    """Per-row embedding that depends only on that row's IDs and positions.

    Args:
        input_ids: [batch_size, seq_len] int64
        attention_mask: [batch_size, seq_len] int64

    Returns:
        Tensor of shape [batch_size, 1]; callers broadcast it over embed_dim
    """
    positions = torch.arange(1, input_ids.size(1) + 1, dtype=torch.float32)
    weighted = input_ids.to(torch.float32) * attention_mask.to(torch.float32) * positions
    return weighted.sum(dim=1, keepdim=True)


def expected_embedding(ids: Sequence[int], seq_len: int = SEQ_LEN, embed_dim: int = EMBED_DIM) -> torch.Tensor:
    """Embedding the StubEngine produces for one chunk (after truncation)."""
    row = torch.zeros(1, seq_len, dtype=torch.int64)
    mask = torch.zeros(1, seq_len, dtype=torch.int64)
    ids = torch.as_tensor(list(ids), dtype=torch.int64)[:seq_len]
    row[0, : ids.numel()] = ids
    mask[0, : ids.numel()] = 1
    base = stub_sentence_embedding(row, mask)
    return (base + torch.arange(embed_dim, dtype=torch.float32))[0]


class StubHandle:
    """Handle returned by StubEngine.open."""

    def __init__(self, model_path: str, input_names: List[str], output_names: List[str]):
        self.model_path = model_path
        self.input_names = input_names
        self.output_names = output_names
        self.closed = False


class StubEngine(Engine):
    """Deterministic in-memory engine.

    Args:
        thread_safe: Value of the ``thread_safe`` capability flag
        fail_ids: Token IDs that make a run fail with RuntimeError
        gate: Event every non-failing run waits on before producing output
        barrier: Barrier every run waits on (proves runs overlap)
        delay_for: Seconds to sleep, computed from the run's input_ids
        open_error: Exception raised by ``open``
    """

    def __init__(
        self,
        thread_safe: bool = True,
        fail_ids: Iterable[int] = (),
        gate: Optional[threading.Event] = None,
        barrier: Optional[threading.Barrier] = None,
        delay_for: Optional[Callable[[torch.Tensor], float]] = None,
        open_error: Optional[Exception] = None,
    ):
        self.thread_safe = thread_safe
        self.fail_ids = set(fail_ids)
        self.gate = gate
        self.barrier = barrier
        self.delay_for = delay_for
        self.open_error = open_error

        self.open_calls = 0
        self.close_calls = 0
        self.runs = 0
        self.active = 0
        self.max_active = 0
        self.waiting = 0
        self._condition = threading.Condition()

    def open(self, model_path, input_names, output_names):
        if self.open_error is not None:
            raise self.open_error
        self.open_calls += 1
        return StubHandle(model_path, list(input_names), list(output_names))

    def run(self, handle, inputs: Dict[str, torch.Tensor], outputs: Dict[str, torch.Tensor]):
        if handle.closed:
            raise RuntimeError("stub handle is closed")

        with self._condition:
            self.runs += 1
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            input_ids = inputs["input_ids"]
            attention_mask = inputs["attention_mask"]

            if self.fail_ids and any(int(i) in self.fail_ids for i in input_ids.flatten()):
                raise RuntimeError("injected engine failure")

            if self.barrier is not None:
                self.barrier.wait()
            if self.gate is not None:
                with self._condition:
                    self.waiting += 1
                    self._condition.notify_all()
                self.gate.wait(timeout=10)
            if self.delay_for is not None:
                time.sleep(self.delay_for(input_ids))

            sentence = outputs["sentence_embedding"]
            base = stub_sentence_embedding(input_ids, attention_mask)
            sentence.copy_(base + torch.arange(sentence.size(1), dtype=torch.float32))
            tokens = outputs["token_embeddings"]
            tokens.copy_(input_ids.to(torch.float32).unsqueeze(-1).expand_as(tokens))
        finally:
            with self._condition:
                self.active -= 1

    def close(self, handle):
        if handle.closed:
            raise RuntimeError("stub handle closed twice")
        handle.closed = True
        self.close_calls += 1

    def wait_for_waiting(self, count: int, timeout: float = 5.0) -> bool:
        """Block until ``count`` runs are parked on the gate."""
        with self._condition:
            return self._condition.wait_for(lambda: self.waiting >= count, timeout=timeout)


@pytest.fixture
def embed_config() -> EmbeddingConfig:
    """Small configuration so tensors stay tiny."""
    return EmbeddingConfig(model_path="models/stub.onnx", seq_len=SEQ_LEN, embed_dim=EMBED_DIM)


@pytest.fixture
def stub_engine() -> StubEngine:
    return StubEngine()


@pytest.fixture
def allocator() -> TensorAllocator:
    return TensorAllocator()


@pytest.fixture
def make_service(embed_config, allocator):
    """Factory for opened services; every service is closed after the test."""
    services: List[EmbeddingService] = []

    def factory(engine: Optional[Engine] = None, **config_overrides: Any) -> EmbeddingService:
        config = embed_config.model_copy(update=config_overrides) if config_overrides else embed_config
        service = EmbeddingService(
            config,
            engine=engine if engine is not None else StubEngine(),
            allocator=allocator,
        )
        services.append(service.open())
        return service

    yield factory

    for service in services:
        service.close()


@pytest.fixture
def service(make_service, stub_engine) -> EmbeddingService:
    return make_service(stub_engine)


@pytest.fixture
def engine_factory() -> Callable[..., StubEngine]:
    """StubEngine constructor, for tests that need custom failure/timing."""
    return StubEngine


@pytest.fixture
def expected() -> Callable[..., torch.Tensor]:
    """Reference embedding the StubEngine produces for one chunk."""
    return expected_embedding
