"""Cooperative cancellation for export runs.

The caller keeps a token and may cancel it from any thread. Stages check it
between photos, between sections and between stages; the orchestrator turns
the resulting ``ExportCancelled`` into an ``EXPORT_CANCELLED`` error and
removes partial output.
"""

import threading
from typing import Optional


class ExportCancelled(Exception):
    """Raised at a checkpoint once cancellation was requested."""

    def __init__(self, checkpoint: Optional[str] = None):
        self.checkpoint = checkpoint
        super().__init__(f"Export cancelled at {checkpoint}" if checkpoint else "Export cancelled")


class CancellationToken:
    """Thread-safe cancellation flag."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        """Request cancellation."""
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, checkpoint: Optional[str] = None) -> None:
        """Stop the current stage if cancellation was requested.

        Args:
            checkpoint: Where the check happened, for logs and errors.

        Raises:
            ExportCancelled: Cancellation was requested.
        """
        if self._event.is_set():
            raise ExportCancelled(checkpoint)


def checkpoint(token: Optional[CancellationToken], name: str) -> None:
    """Check ``token`` if one was supplied."""
    if token is not None:
        token.raise_if_cancelled(name)
