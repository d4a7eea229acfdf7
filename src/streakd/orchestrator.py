"""
Event orchestration for streakd.

Wires navigation events through the dedup gate, classifier and streak
tracker, persists the result and opens the interruption when a streak
crosses the threshold. Also handles the control messages sent by the alert
page and the CLI.

Nothing here raises to the event source: store and presenter failures are
logged where they happen and the daemon keeps tracking.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from .classifier import classify
from .config import Configuration
from .db import (
    ALL_KEYS,
    SETTINGS_KEY,
    ChangeSet,
    KeyValueStore,
    StoreError,
    configuration_from_values,
    state_from_values,
    state_to_values,
)
from .dedup import DedupGate
from .notify import InterruptionPresenter
from .streak import StreakResult, StreakState, advance

log = logging.getLogger("streakd.orchestrator")

# URL prefixes of browser-internal pages, never counted as distractions
INTERNAL_URL_PREFIXES = ('chrome', 'about:', 'edge:', 'moz-extension:', 'view-source:')


class NavigationKind(Enum):
    UPDATED = "updated"
    ACTIVATED = "activated"


class ControlMessage(Enum):
    RESET_COUNTER = "reset_counter"
    ALERT_ACKNOWLEDGED = "alert_acknowledged"
    ALERT_DISMISSED = "alert_dismissed"
    TEST_ALERT = "test_alert"
    GET_STATUS = "get_status"


@dataclass(frozen=True)
class NavigationEvent:
    """A tab finished loading or became active."""
    tab_id: Optional[int]
    url: str
    kind: NavigationKind = NavigationKind.UPDATED


def is_internal_url(url: str) -> bool:
    return not url or url.startswith(INTERNAL_URL_PREFIXES)


@dataclass
class OrchestratorContext:
    """Everything the handlers share, built once per process."""
    store: KeyValueStore
    presenter: InterruptionPresenter
    dedup: DedupGate = field(default_factory=DedupGate)
    defaults: Configuration = field(default_factory=Configuration)


class EventOrchestrator:
    """
    Handles navigation events and control messages.

    All state read-modify-write cycles go through one lock, so events for
    different tabs can't interleave their store round-trips and clobber
    each other's counts.
    """

    def __init__(self, context: OrchestratorContext):
        self.ctx = context
        self._lock = asyncio.Lock()
        self._unsubscribe = context.store.subscribe(self._on_store_change)

    def close(self):
        self._unsubscribe()

    # --- Store access ---

    async def _load(self) -> tuple[Configuration, StreakState]:
        """Read settings and state, falling back to defaults on failure."""
        try:
            values = await self.ctx.store.get(ALL_KEYS)
        except StoreError as e:
            log.error(f"Error reading storage, using defaults: {e}")
            return self.ctx.defaults, StreakState()

        if SETTINGS_KEY in values:
            config = configuration_from_values(values)
        else:
            config = self.ctx.defaults
        return config, state_from_values(values)

    async def _save(self, state: StreakState) -> bool:
        try:
            await self.ctx.store.set(state_to_values(state))
        except StoreError as e:
            log.error(f"Error saving storage: {e}")
            return False
        return True

    def _on_store_change(self, changes: ChangeSet):
        if SETTINGS_KEY in changes:
            old, new = changes[SETTINGS_KEY]
            old_threshold = old.get('threshold') if isinstance(old, dict) else None
            new_threshold = new.get('threshold') if isinstance(new, dict) else None
            log.info(f"Settings changed (threshold {old_threshold} -> {new_threshold})")

    # --- Navigation ---

    async def handle_navigation(self, event: NavigationEvent) -> Optional[StreakResult]:
        """
        Process one navigation.

        Returns the streak result, or None if the event was skipped.
        """
        url = event.url
        if is_internal_url(url):
            log.debug(f"Skipping browser/extension URL: {url}")
            return None

        if not self.ctx.dedup.should_process(event.tab_id, url):
            return None

        async with self._lock:
            config, state = await self._load()
            site_type = classify(url, config.rules)
            result = advance(state, site_type, config.threshold)

            log.debug(
                f"handle_navigation: {url} | siteType: {site_type} | "
                f"lastSiteType: {state.last_site_type} | count: {state.consecutive_count}"
            )

            if result.next_state != state:
                await self._save(result.next_state)

        if result.snoozed:
            log.info(f"Threshold reached on {site_type}, snoozed "
                     f"({result.next_state.snooze_remaining} left)")
        elif result.fired:
            log.info(f"Threshold reached on {site_type} ({config.threshold}), interrupting")
            await self._present()
        elif site_type is None and not state.is_idle:
            log.info(f"Untracked site visited, streak reset from {state.consecutive_count}")

        return result

    def handle_tab_removed(self, tab_id: int):
        self.ctx.dedup.forget(tab_id)

    async def _present(self) -> bool:
        try:
            return await self.ctx.presenter.open_interruption()
        except Exception as e:
            log.error(f"Error opening interruption: {e}", exc_info=True)
            return False

    # --- Control messages ---

    async def handle_control(self, message: ControlMessage) -> dict:
        """Apply a control message and return its reply."""
        if message is ControlMessage.RESET_COUNTER:
            ok = await self._reset()
            log.info("Counter and snooze reset")
            return {'ok': ok}
        elif message is ControlMessage.ALERT_ACKNOWLEDGED:
            ok = await self._reset()
            log.info("Alert acknowledged, back to work")
            return {'ok': ok}
        elif message is ControlMessage.ALERT_DISMISSED:
            return {'ok': await self._snooze()}
        elif message is ControlMessage.TEST_ALERT:
            log.info("Manual alert test triggered")
            return {'ok': await self._present()}
        elif message is ControlMessage.GET_STATUS:
            return await self._status()
        else:
            raise ValueError(f"Unhandled control message: {message}")

    async def _reset(self) -> bool:
        """Back to Idle with no snooze, and forget what every tab showed."""
        async with self._lock:
            ok = await self._save(StreakState())
        self.ctx.dedup.clear_all()
        return ok

    async def _snooze(self) -> bool:
        async with self._lock:
            config, state = await self._load()
            snooze = config.dismiss_snooze
            log.info(f"Alert dismissed, ignoring the next {snooze} alerts")
            return await self._save(StreakState(
                consecutive_count=state.consecutive_count,
                last_site_type=state.last_site_type,
                snooze_remaining=snooze,
            ))

    async def _status(self) -> dict:
        config, state = await self._load()
        return {
            'ok': True,
            'currentCount': state.consecutive_count,
            'lastSiteType': state.last_site_type,
            'threshold': config.threshold,
            'snoozeCountRemaining': state.snooze_remaining,
        }
