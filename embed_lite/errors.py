"""Exception hierarchy for embedding generation."""


class EmbeddingError(Exception):
    """Base class for all embed_lite errors."""


class ConfigurationError(EmbeddingError):
    """Missing or invalid model / tokenizer configuration. Not retried."""


class AllocationError(EmbeddingError):
    """A tensor buffer could not be constructed."""


class EngineError(EmbeddingError):
    """The inference engine failed. Output buffers of the call are unusable."""


class ShapeAssertionError(EngineError):
    """An engine output could not be read as the expected tensor type/shape."""
