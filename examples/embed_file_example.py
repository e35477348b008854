"""Example: embed a text file chunk by chunk.

Reads a text file, tokenizes it, splits the token IDs into ``seq_len``
chunks and embeds every chunk with the ONNX model.

Configuration comes from the environment (or a ``.env`` file):
    EMBED_MODEL_PATH=models/model.onnx
    EMBED_TOKENIZER_PATH=models/tokenizer.json
    EMBED_SUB_BATCH_SIZE=8      # optional, enables the concurrent path

Usage:
    python examples/embed_file_example.py input.txt
"""

import sys

from embed_lite import EmbeddingService, get_config
from embed_lite.utils.logging import configure_logging


def main():
    """Embed the file given on the command line."""
    path = sys.argv[1] if len(sys.argv) > 1 else "input.txt"

    config = get_config()
    configure_logging(config.log_level, config.log_format)

    with open(path, encoding="utf-8") as handle:
        text = handle.read()

    with EmbeddingService(config) as service:
        embeddings = service.embed_text(text)
        print(f"Generated {len(embeddings)} embeddings of dimension {config.embed_dim}")
        print(f"Allocator stats after run: {service.get_stats()}")


if __name__ == "__main__":
    main()
