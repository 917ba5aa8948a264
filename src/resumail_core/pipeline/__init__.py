"""
Record partitioning helpers.
"""
from .chunker import chunk

__all__ = ['chunk']
