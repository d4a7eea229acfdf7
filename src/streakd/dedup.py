"""
Per-tab duplicate suppression.

Browsers report one page load several times (tab updated, tab activated).
The gate remembers the last URL handled for each tab and drops repeats.
"""

import logging
from typing import Optional

log = logging.getLogger("streakd.dedup")


class DedupGate:
    """Tracks the last processed URL per tab."""

    def __init__(self):
        self._last_url: dict[int, str] = {}

    def should_process(self, tab_id: Optional[int], url: str) -> bool:
        """
        True if this (tab, url) hasn't just been handled.

        A repeat leaves the record untouched. Events without a tab id are
        always processed and never recorded.
        """
        if tab_id is None:
            return True

        if self._last_url.get(tab_id) == url:
            log.debug(f"Skipping duplicate URL for tab {tab_id}: {url}")
            return False

        self._last_url[tab_id] = url
        return True

    def forget(self, tab_id: int):
        """Drop the record for a closed tab."""
        self._last_url.pop(tab_id, None)

    def clear_all(self):
        self._last_url.clear()

    def __len__(self) -> int:
        return len(self._last_url)
