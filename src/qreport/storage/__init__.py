"""Storage layer for the QReport export engine.

Provides atomic, rollback-capable writing of export output files.
"""

from .files import (
    OutputTransaction,
    ensure_writable,
    file_size,
    free_space,
    nearest_existing_ancestor,
)

__all__ = [
    "OutputTransaction",
    "ensure_writable",
    "file_size",
    "free_space",
    "nearest_existing_ancestor",
]
