"""
Callback interface for progress reporting.

Per-message events are delivered from worker threads.
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .email_processor import ChunkResult, RunSummary


class ProcessingCallback:
    """Callback interface for progress updates."""

    def on_start(self, total_uids: int, total_chunks: int) -> None:
        """Called when processing starts."""
        pass

    def on_chunk_start(self, index: int, total_chunks: int, size: int) -> None:
        """Called before a chunk is fetched."""
        pass

    def on_email_read(self, uid: int, subject: str) -> None:
        """Called when a message has been marked as seen."""
        pass

    def on_mark_failed(self, uid: int, error: Exception) -> None:
        """Called when marking a message as seen failed."""
        pass

    def on_chunk_complete(self, index: int, result: "ChunkResult") -> None:
        """Called after every mark task of a chunk has finished."""
        pass

    def on_complete(self, summary: "RunSummary") -> None:
        """Called when all chunks are processed."""
        pass
