"""Context compression."""

from .policy import CompressionPolicy, CHARS_PER_TOKEN, compression_ratio, estimate_tokens

__all__ = ["CompressionPolicy", "CHARS_PER_TOKEN", "compression_ratio", "estimate_tokens"]
