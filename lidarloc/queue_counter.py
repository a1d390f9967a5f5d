"""Counts input scans against processed results."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class QueueCounter:
    """Tracks how many scans arrived and how many were processed."""

    enqueue: int = 0
    dequeue: int = 0

    def on_input(self) -> None:
        """Record one incoming scan."""
        self.enqueue += 1

    def on_processed(self) -> str:
        """Record one processed result and return the progress line."""
        self.dequeue += 1
        return f"(Processed/Input): ({self.dequeue} / {self.enqueue})"