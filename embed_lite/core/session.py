"""
Inference session wrapper.

An InferenceSession owns one engine handle for its whole lifetime. It is
opened once, shared by every caller through ``run``, and closed exactly once.
Engines that do not support concurrent runs on one handle are serialized with
a mutex.
"""

import contextlib
import threading
from typing import Any, Optional, Sequence

import structlog

from embed_lite.core.engine import Engine
from embed_lite.errors import EmbeddingError, EngineError
from embed_lite.memory.io_set import IOSet

logger = structlog.get_logger("embed_lite.core.session")


class InferenceSession:
    """Reusable execution context bound to one model and name contract.

    Attributes:
        engine: Engine the handle belongs to.
        model_path: Model the session was opened for.
        input_names: Fixed input tensor names.
        output_names: Fixed output tensor names.
    """

    def __init__(
        self,
        engine: Engine,
        handle: Any,
        model_path: str,
        input_names: Sequence[str],
        output_names: Sequence[str],
    ) -> None:
        self.engine = engine
        self.model_path = model_path
        self.input_names = list(input_names)
        self.output_names = list(output_names)
        self._handle: Optional[Any] = handle
        self._lifecycle_lock = threading.Lock()
        self._run_lock = None if engine.thread_safe else threading.Lock()

    @classmethod
    def open(
        cls,
        engine: Engine,
        model_path: str,
        input_names: Sequence[str],
        output_names: Sequence[str],
    ) -> "InferenceSession":
        """Open a session.

        Args:
            engine: Engine to open the model with
            model_path: Path to the model
            input_names: Input tensor names, in order
            output_names: Output tensor names, in order

        Returns:
            Open session

        Raises:
            ConfigurationError: If the engine rejects the model path or names
            EngineError: If the engine fails to create the execution context
        """
        try:
            handle = engine.open(model_path, list(input_names), list(output_names))
        except EmbeddingError:
            raise
        except Exception as exc:
            raise EngineError(f"failed to create session: {exc}") from exc

        logger.info(
            "session opened",
            model_path=model_path,
            serialized=not engine.thread_safe,
        )
        return cls(engine, handle, model_path, input_names, output_names)

    @property
    def closed(self) -> bool:
        return self._handle is None

    def run(self, io_set: IOSet) -> None:
        """Run inference over an IOSet, filling its output buffers in place.

        Blocks until the engine returns. After an error the output buffers
        hold undefined data and must not be read.

        Raises:
            EngineError: If the session is closed, the IOSet does not match
                the name contract, or the engine fails
        """
        handle = self._handle
        if handle is None:
            raise EngineError("session is closed")

        if io_set.input_names != self.input_names or io_set.output_names != self.output_names:
            raise EngineError(
                f"IOSet names {io_set.input_names}/{io_set.output_names} do not match "
                f"session contract {self.input_names}/{self.output_names}"
            )

        lock = self._run_lock if self._run_lock is not None else contextlib.nullcontext()
        with lock:
            try:
                self.engine.run(handle, io_set.input_tensors(), io_set.output_tensors())
            except EmbeddingError:
                raise
            except Exception as exc:
                raise EngineError(f"inference failed: {exc}") from exc

    def close(self) -> None:
        """Release the execution context. Calling it again is a no-op."""
        with self._lifecycle_lock:
            handle = self._handle
            if handle is None:
                return
            self._handle = None

        self.engine.close(handle)
        logger.info("session closed", model_path=self.model_path)

    def __enter__(self) -> "InferenceSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
