"""
Optional protocol and response features
"""

from .compression import CompressionFilter, accepts_encoding, is_compressible

__all__ = ["CompressionFilter", "accepts_encoding", "is_compressible"]
