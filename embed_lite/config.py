"""
Configuration for the embedding service.

Settings are read from environment variables prefixed with ``EMBED_`` (for
example ``EMBED_MODEL_PATH`` or ``EMBED_SEQ_LEN``), from an optional ``.env``
file, or passed directly as keyword arguments.

Usage
- ``config = EmbeddingConfig()`` for environment-driven settings
- ``config = get_config(model_path="models/model.onnx", seq_len=256)`` when
  invalid values should surface as ``ConfigurationError``
"""

from typing import Any, List, Optional

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from embed_lite.errors import ConfigurationError


class EmbeddingConfig(BaseSettings):
    """Embedding service configuration.

    Attributes:
        model_path: Path to the ONNX model file.
        seq_len: Fixed sequence length every chunk is padded to.
        embed_dim: Dimension of the sentence embedding output.
        tokenizer_path: Tokenizer directory or ``tokenizer.json`` file.
        sub_batch_size: Sub-batch width for the concurrent path. ``None``
            selects the single sequential pass.
        onnx_providers: onnxruntime execution providers, in priority order.
        intra_op_num_threads: onnxruntime intra-op thread count.
        max_buffer_bytes: Cap on live tensor bytes held by the allocator.
        log_level: ``DEBUG``, ``INFO``, ``WARNING`` or ``ERROR``.
        log_format: ``json`` or ``console``.
    """

    model_config = SettingsConfigDict(
        env_prefix="EMBED_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        protected_namespaces=(),
    )

    model_path: str = Field(default="models/model.onnx")
    seq_len: int = Field(default=512, gt=0)
    embed_dim: int = Field(default=768, gt=0)
    tokenizer_path: Optional[str] = Field(default=None)
    sub_batch_size: Optional[int] = Field(default=None, gt=0)

    # Inference engine
    onnx_providers: List[str] = Field(default_factory=lambda: ["CPUExecutionProvider"])
    intra_op_num_threads: Optional[int] = Field(default=None, gt=0)

    # Tensor allocation
    max_buffer_bytes: Optional[int] = Field(default=None, gt=0)

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR"}:
            raise ValueError(f"unsupported log level: {value}")
        return level

    @field_validator("log_format")
    @classmethod
    def _check_log_format(cls, value: str) -> str:
        if value not in {"json", "console"}:
            raise ValueError(f"log_format must be 'json' or 'console', got {value}")
        return value


def get_config(**overrides: Any) -> EmbeddingConfig:
    """Build an ``EmbeddingConfig``, reporting invalid values as ConfigurationError."""
    try:
        return EmbeddingConfig(**overrides)
    except ValidationError as exc:
        raise ConfigurationError(f"invalid embedding configuration: {exc}") from exc
