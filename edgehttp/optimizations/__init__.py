from .memory_optimizations import OptimizedBuffer, MemoryPool, RequestArena

__all__ = ["OptimizedBuffer", "MemoryPool", "RequestArena"]
