"""
Tokenizer boundary.

Provides:
- Codec: Text to token-ID encoding
- TokenizerRegistry: Process-wide, load-once tokenizer cache
"""

from embed_lite.tokenizer.codec import Codec, TokenizerRegistry, load_processor

__all__ = ["Codec", "TokenizerRegistry", "load_processor"]
