"""
Store backend abstraction layer.

Provides the abstract store contract and its implementations.
Each backend implements the same interface, allowing seamless switching.
"""

from .base import StoreBackend

__all__ = [
    "StoreBackend",
]
