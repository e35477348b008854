"""
Embedding service: batched sentence embeddings over an inference session.

The service chunks token sequences, builds one IOSet per inference call, runs
the shared InferenceSession and copies one embedding vector per chunk out of
the ``sentence_embedding`` output before the IOSet is released.

Two batch paths are provided:
- ``generate_batch``: one IOSet and one ``run`` for the whole chunk list
- ``generate_batch_concurrently``: one worker thread per sub-batch

Concurrent path contract:
- Workers are not capped: one thread is started per sub-batch, so parallelism
  is bounded only by the number of sub-batches. Very large inputs therefore
  start many threads and hold many IOSets at once.
- Workers are not cancelled. The first error collected is raised to the
  caller immediately; workers still in flight run to completion and release
  their own IOSets afterwards. ``wait_for_workers`` joins them and ``close``
  always does so before closing the session.
- Every worker reports exactly once per chunk of its sub-batch, error or not,
  so the collector never waits for a report that will not come.
"""

import queue
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Set

import structlog
import torch

from embed_lite.batch.chunker import Chunk, Chunker, TokenIds, partition
from embed_lite.batch.tensor_builder import (
    INPUT_NAMES,
    OUTPUT_NAMES,
    SENTENCE_EMBEDDING,
    TensorBuilder,
)
from embed_lite.config import EmbeddingConfig, get_config
from embed_lite.core.engine import Engine
from embed_lite.core.session import InferenceSession
from embed_lite.errors import ConfigurationError, ShapeAssertionError
from embed_lite.memory.io_set import IOSet
from embed_lite.memory.tensor_allocator import TensorAllocator
from embed_lite.tokenizer.codec import Codec

logger = structlog.get_logger("embed_lite.core.embedding_service")


class ServiceState(Enum):
    """Lifecycle state of an EmbeddingService."""

    CREATED = "created"  # Constructed, session not opened yet
    OPEN = "open"  # Session live, generate* operations allowed
    CLOSED = "closed"  # Session released; terminal


@dataclass
class _Report:
    """One worker report for a single chunk index."""
    index: int
    embedding: Optional[torch.Tensor] = None
    error: Optional[BaseException] = None


class EmbeddingService:
    """Generates sentence embeddings for token-ID chunks.

    The service opens one InferenceSession and shares it between all calls.
    Use it as a context manager, or call ``open`` and ``close`` explicitly:

        with EmbeddingService(config) as service:
            embeddings = service.embed_text(text)

    Attributes:
        config: Service configuration.
        engine: Inference engine the session is opened with.
        allocator: Allocator tracking every buffer created for inference.
        tensor_builder: Builds the IOSet of each call.
        chunker: Splits token sequences into ``seq_len`` windows.
    """

    def __init__(
        self,
        config: Optional[EmbeddingConfig] = None,
        engine: Optional[Engine] = None,
        allocator: Optional[TensorAllocator] = None,
        codec: Optional[Codec] = None,
    ) -> None:
        """Initialize the service in the CREATED state.

        Args:
            config: Service configuration (read from the environment if omitted)
            engine: Inference engine (an OnnxEngine if omitted)
            allocator: Buffer allocator (created from ``config.max_buffer_bytes``
                if omitted)
            codec: Tokenizer codec for ``embed_text`` (loaded lazily from
                ``config.tokenizer_path`` if omitted)

        Raises:
            ConfigurationError: If the configuration read from the environment
                is invalid or the model path is empty
        """
        if config is None:
            config = get_config()
        if not config.model_path:
            raise ConfigurationError("model path is empty")

        if engine is None:
            from embed_lite.core.onnx_engine import OnnxEngine

            engine = OnnxEngine(
                providers=config.onnx_providers,
                intra_op_num_threads=config.intra_op_num_threads,
            )

        self.config = config
        self.engine = engine
        self.allocator = (
            allocator
            if allocator is not None
            else TensorAllocator(max_bytes=config.max_buffer_bytes)
        )
        self.tensor_builder = TensorBuilder(config.seq_len, config.embed_dim, self.allocator)
        self.chunker = Chunker(config.seq_len)
        self.codec = codec

        self.session: Optional[InferenceSession] = None
        self._state = ServiceState.CREATED
        self._state_lock = threading.Lock()

        # Worker threads of generate_batch_concurrently still running
        self._workers: Set[threading.Thread] = set()
        self._workers_lock = threading.Lock()

    @property
    def state(self) -> ServiceState:
        return self._state

    def open(self) -> "EmbeddingService":
        """Open the inference session (CREATED -> OPEN).

        Returns:
            The service itself

        Raises:
            RuntimeError: If the service is not in the CREATED state
            ConfigurationError: If the engine rejects the model
            EngineError: If the engine fails to create the session
        """
        with self._state_lock:
            if self._state is not ServiceState.CREATED:
                raise RuntimeError(f"Cannot open an EmbeddingService in state '{self._state.value}'")

            self.session = InferenceSession.open(
                self.engine, self.config.model_path, INPUT_NAMES, OUTPUT_NAMES
            )
            self._state = ServiceState.OPEN

        return self

    def close(self) -> None:
        """Close the service (-> CLOSED). Calling it again is a no-op.

        Waits for workers of earlier concurrent calls before releasing the
        session.
        """
        with self._state_lock:
            if self._state is ServiceState.CLOSED:
                return
            previous = self._state
            self._state = ServiceState.CLOSED

        if previous is ServiceState.OPEN:
            try:
                self.wait_for_workers()
            finally:
                self.session.close()

    def __enter__(self) -> "EmbeddingService":
        if self._state is ServiceState.CREATED:
            self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _require_open(self) -> InferenceSession:
        # A close() that lands after this check surfaces as EngineError from
        # the session, not RuntimeError.
        with self._state_lock:
            if self._state is not ServiceState.OPEN:
                raise RuntimeError(
                    f"EmbeddingService is {self._state.value}; call open() before generating embeddings"
                )
            return self.session

    def chunk_text(self, ids: TokenIds) -> List[Chunk]:
        """Split token IDs into chunks of at most ``seq_len`` tokens."""
        return self.chunker.split(ids)

    def generate(self, ids: TokenIds) -> torch.Tensor:
        """Generate the embedding of a single token sequence.

        IDs beyond ``seq_len`` are truncated.

        Args:
            ids: Token IDs

        Returns:
            Embedding vector of shape [embed_dim]
        """
        session = self._require_open()

        with self.tensor_builder.build_single(ids) as io_set:
            session.run(io_set)
            return self._sentence_embeddings(io_set, 1)[0]

    def generate_batch(self, chunks: Sequence[TokenIds]) -> List[torch.Tensor]:
        """Generate embeddings for all chunks in a single inference call.

        Args:
            chunks: Token-ID chunks

        Returns:
            One embedding per chunk, in chunk order. Empty input gives an
            empty list.

        Raises:
            AllocationError: If the batch tensors cannot be built
            EngineError: If inference fails
        """
        session = self._require_open()
        if len(chunks) == 0:
            return []

        with self.tensor_builder.build_batch(chunks) as io_set:
            session.run(io_set)
            return self._sentence_embeddings(io_set, len(chunks))

    def generate_batch_concurrently(
        self,
        chunks: Sequence[TokenIds],
        sub_batch_size: int,
    ) -> List[torch.Tensor]:
        """Generate embeddings with one worker thread per sub-batch.

        Args:
            chunks: Token-ID chunks
            sub_batch_size: Chunks per sub-batch; the last may be shorter

        Returns:
            One embedding per chunk, in chunk order regardless of the order
            in which workers finish

        Raises:
            ValueError: If sub_batch_size is not positive
            RuntimeError: If a worker thread cannot be started; workers
                already started are left to finish
            AllocationError: If a sub-batch's tensors cannot be built
            EngineError: If inference fails for any sub-batch. This is the
                first error collected; other workers are left to finish.
        """
        session = self._require_open()
        ranges = partition(len(chunks), sub_batch_size)
        num_chunks = len(chunks)
        if num_chunks == 0:
            return []

        reports: "queue.Queue[_Report]" = queue.Queue()
        for start, end in ranges:
            worker = threading.Thread(
                target=self._run_sub_batch,
                args=(session, chunks[start:end], start, reports),
                name=f"embed-worker-{start}-{end - 1}",
            )
            with self._workers_lock:
                self._workers.add(worker)
            try:
                worker.start()
            except RuntimeError as exc:
                with self._workers_lock:
                    self._workers.discard(worker)
                logger.error("failed to start worker", start=start, end=end - 1, error=str(exc))
                raise

        results: List[Optional[torch.Tensor]] = [None] * num_chunks
        for _ in range(num_chunks):
            report = reports.get()
            if report.error is not None:
                raise report.error
            results[report.index] = report.embedding

        logger.info("all batches processed", chunks=num_chunks, sub_batches=len(ranges))
        return results

    def embed_ids(
        self,
        ids: TokenIds,
        sub_batch_size: Optional[int] = None,
    ) -> List[torch.Tensor]:
        """Chunk token IDs and embed every chunk.

        Args:
            ids: Token IDs of any length
            sub_batch_size: Sub-batch width for the concurrent path. Falls back
                to ``config.sub_batch_size``; if both are None a single
                sequential batch is used.

        Returns:
            One embedding per chunk, in chunk order
        """
        chunks = self.chunk_text(ids)
        width = sub_batch_size if sub_batch_size is not None else self.config.sub_batch_size
        if width is None:
            return self.generate_batch(chunks)
        return self.generate_batch_concurrently(chunks, width)

    def embed_text(self, text: str, sub_batch_size: Optional[int] = None) -> List[torch.Tensor]:
        """Tokenize ``text`` and embed every chunk of its token IDs.

        Raises:
            ConfigurationError: If no codec was given and no tokenizer path is
                configured, or the tokenizer cannot be loaded
        """
        if self.codec is None:
            if not self.config.tokenizer_path:
                raise ConfigurationError("tokenizer path is not configured")
            self.codec = Codec(self.config.tokenizer_path)

        return self.embed_ids(self.codec.encode(text), sub_batch_size=sub_batch_size)

    def wait_for_workers(self, timeout: Optional[float] = None) -> bool:
        """Join worker threads left running by concurrent calls.

        Args:
            timeout: Maximum seconds to wait in total, or None to wait forever

        Returns:
            True if no worker is running anymore
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._workers_lock:
            workers = list(self._workers)

        for worker in workers:
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            worker.join(remaining)

        with self._workers_lock:
            return not self._workers

    def get_stats(self) -> Dict[str, Any]:
        """Get service statistics.

        Returns:
            Dictionary with the service state, running worker count and the
            allocator statistics
        """
        with self._workers_lock:
            workers = len(self._workers)

        return {
            "state": self._state.value,
            "workers_in_flight": workers,
            **self.allocator.get_stats(),
        }

    def _run_sub_batch(
        self,
        session: InferenceSession,
        batch: Sequence[TokenIds],
        start: int,
        reports: "queue.Queue[_Report]",
    ) -> None:
        """Worker body: embed one sub-batch and report once per chunk."""
        end = start + len(batch)
        log = logger.bind(start=start, end=end - 1)
        try:
            log.info("worker started")
            try:
                io_set = self.tensor_builder.build_batch(batch)
            except Exception as exc:
                log.error("failed to prepare batch tensors", error=str(exc))
                self._report_failure(reports, start, end, exc)
                return

            log.debug("created tensors")
            error: Optional[Exception] = None
            try:
                session.run(io_set)
                embeddings = self._sentence_embeddings(io_set, len(batch))
            except Exception as exc:
                error = exc
            finally:
                io_set.release()
                log.debug("released tensors")

            if error is not None:
                log.error("inference failed", error=str(error))
                self._report_failure(reports, start, end, error)
                return

            log.info("completed inference")
            for offset, embedding in enumerate(embeddings):
                reports.put(_Report(index=start + offset, embedding=embedding))
        finally:
            with self._workers_lock:
                self._workers.discard(threading.current_thread())

    @staticmethod
    def _report_failure(
        reports: "queue.Queue[_Report]",
        start: int,
        end: int,
        error: BaseException,
    ) -> None:
        for index in range(start, end):
            reports.put(_Report(index=index, error=error))

    def _sentence_embeddings(self, io_set: IOSet, batch_size: int) -> List[torch.Tensor]:
        """Copy one embedding per row out of the sentence embedding output.

        The vectors are cloned so they stay valid after the IOSet is released.

        Raises:
            ShapeAssertionError: If the output is not a float32 tensor of shape
                [batch_size, embed_dim]
        """
        output = io_set.output(SENTENCE_EMBEDDING).tensor
        expected = (batch_size, self.config.embed_dim)
        if output.dtype != torch.float32 or tuple(output.shape) != expected:
            raise ShapeAssertionError(
                f"expected float32 {SENTENCE_EMBEDDING} of shape {expected}, "
                f"got {output.dtype} {tuple(output.shape)}"
            )

        return [row.clone() for row in output]
