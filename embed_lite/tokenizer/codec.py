"""
Text codec: text to token IDs.

Tokenizers are loaded at most once per model path and shared by every Codec
in the process. A load failure is cached as well: later callers get the same
error without another load attempt.
"""

import os
import threading
from typing import Callable, Dict, Optional, Tuple

import structlog
import torch
from transformers import AutoTokenizer, PreTrainedTokenizerBase, PreTrainedTokenizerFast

from embed_lite.errors import ConfigurationError

logger = structlog.get_logger("embed_lite.tokenizer.codec")

Loader = Callable[[str], PreTrainedTokenizerBase]


def load_pretrained(model_path: str) -> PreTrainedTokenizerBase:
    """Load a tokenizer from a directory or a ``tokenizer.json`` file.

    Raises:
        ConfigurationError: If the path is empty, missing or not loadable
    """
    if not model_path:
        raise ConfigurationError("model path is empty")
    if not os.path.exists(model_path):
        raise ConfigurationError(f"model file not found at {model_path}")

    try:
        if os.path.isfile(model_path):
            return PreTrainedTokenizerFast(tokenizer_file=model_path)
        return AutoTokenizer.from_pretrained(model_path)
    except Exception as exc:
        raise ConfigurationError(f"failed to load tokenizer from {model_path}: {exc}") from exc


class TokenizerRegistry:
    """Process-scoped tokenizer cache keyed by model path.

    ``get`` loads each path once. The result, tokenizer or error, is kept and
    returned to every later caller.

    Attributes:
        loader: Function that loads a tokenizer from a path.
    """

    def __init__(self, loader: Loader = load_pretrained) -> None:
        self.loader = loader
        self._entries: Dict[str, Tuple[Optional[PreTrainedTokenizerBase], Optional[Exception]]] = {}
        self._lock = threading.Lock()

    def get(self, model_path: str) -> PreTrainedTokenizerBase:
        """Get the tokenizer for ``model_path``, loading it on first use.

        Raises:
            ConfigurationError: The (cached) load error for this path
        """
        with self._lock:
            entry = self._entries.get(model_path)
            if entry is None:
                try:
                    entry = (self.loader(model_path), None)
                    logger.info("tokenizer loaded", model_path=model_path)
                except Exception as exc:
                    logger.error("tokenizer load failed", model_path=model_path, error=str(exc))
                    entry = (None, exc)
                self._entries[model_path] = entry

        tokenizer, error = entry
        if error is not None:
            raise error
        return tokenizer

    def clear(self) -> None:
        """Forget every cached tokenizer and error."""
        with self._lock:
            self._entries.clear()


default_registry = TokenizerRegistry()


def load_processor(model_path: str) -> PreTrainedTokenizerBase:
    """Get the process-wide tokenizer for ``model_path``."""
    return default_registry.get(model_path)


class Codec:
    """Encodes text into token IDs.

    Args:
        model_path: Tokenizer directory or ``tokenizer.json`` file
        registry: Tokenizer cache (the process-wide one by default)
        add_special_tokens: Whether to add the tokenizer's special tokens
    """

    def __init__(
        self,
        model_path: str,
        registry: Optional[TokenizerRegistry] = None,
        add_special_tokens: bool = False,
    ) -> None:
        registry = registry if registry is not None else default_registry
        self.processor = registry.get(model_path)
        self.add_special_tokens = add_special_tokens

    def encode(self, text: str) -> torch.Tensor:
        """Encode ``text`` into a 1-D int64 tensor of token IDs."""
        if text is None:
            raise TypeError("text cannot be None")

        ids = self.processor.encode(text, add_special_tokens=self.add_special_tokens)
        return torch.tensor(ids, dtype=torch.int64)
