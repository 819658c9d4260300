"""Progress display and rendering of sync results."""
from __future__ import annotations

import json
import sys
from typing import Optional, TextIO

from tqdm import tqdm

from minion_sync.models import SyncError, SyncResult
from minion_sync.services.sync import SyncCallbacks

PHASE_LABELS = {
    "loading-state": "Loading state",
    "fetching-snapshots": "Fetching tasks",
    "diffing": "Comparing",
    "applying": "Applying",
    "persisting-state": "Saving state",
}


class TextReporter:
    """Shows one tqdm bar per phase and prints item errors as they happen."""

    def __init__(self, stream: Optional[TextIO] = None, *, disable: bool = False) -> None:
        self._stream = stream or sys.stderr
        self._disable = disable
        self._phase: Optional[str] = None
        self._bar: Optional[tqdm] = None

    def on_progress(self, phase: str, processed: int, total: int) -> None:
        if phase != self._phase:
            self.close()
            self._phase = phase
            self._bar = tqdm(
                total=total,
                desc=PHASE_LABELS.get(phase, phase),
                unit="task",
                file=self._stream,
                leave=False,
                disable=self._disable,
            )
        if self._bar is None:
            return
        if total != self._bar.total:
            self._bar.total = total
        self._bar.n = processed
        self._bar.refresh()

    def on_error(self, error: SyncError) -> None:
        tqdm.write(
            f"  ✗ [{error.phase}] {error.item_id or '-'}: {error.message}",
            file=self._stream,
        )

    def close(self) -> None:
        if self._bar is not None:
            self._bar.close()
            self._bar = None

    def callbacks(self) -> SyncCallbacks:
        return SyncCallbacks(on_progress=self.on_progress, on_error=self.on_error)


def render_text(result: SyncResult) -> str:
    stats = result.stats
    headline = "✓ Sync completed successfully" if result.success else "✗ Sync completed with errors"
    if result.dry_run:
        headline += " (dry run, no changes made)"
    lines = [
        "=" * 50,
        headline,
        "=" * 50,
        "",
        "Statistics:",
        f"  Items checked:  {stats.items_checked}",
        f"  Items created:  {stats.items_created}",
        f"  Items updated:  {stats.items_updated}",
        f"  Items deleted:  {stats.items_deleted}",
        f"  Items skipped:  {stats.items_skipped}",
    ]
    if stats.conflicts_detected:
        lines.append(
            f"  Conflicts:      {stats.conflicts_detected} detected, {stats.conflicts_resolved} resolved"
        )
    lines.append(f"  Duration:       {result.duration_ms}ms")
    if result.errors:
        lines.append("")
        lines.append(f"Errors ({len(result.errors)}):")
        for error in result.errors:
            lines.append(f"  ✗ [{error.phase}] {error.message}")
            if error.item_id:
                lines.append(f"    Item: {error.item_id}")
    return "\n".join(lines)


def render_json(result: SyncResult) -> str:
    return json.dumps(result.to_dict(), indent=2, ensure_ascii=False)


__all__ = ["TextReporter", "render_text", "render_json", "PHASE_LABELS"]
