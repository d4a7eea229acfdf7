"""
Interruption presenter for streakd.

Opens the interruption when a streak crosses the threshold, trying
backends in priority order:
1. BrowserPageBackend - opens the configured alert page in the browser
2. NotifySendBackend - critical desktop notification via notify-send
3. LogOnlyBackend - fallback when nothing else is available

The presenter reads the interruption message from the store itself when it
renders; callers just ask it to open.
"""

import asyncio
import logging
import os
import shutil
import subprocess
import webbrowser
from typing import Optional, Protocol, runtime_checkable

import psutil

from .db import SETTINGS_KEY, KeyValueStore, StoreError
from .config import Configuration

log = logging.getLogger("streakd.notify")

APP_NAME = "streakd"
ALERT_TITLE = "Time to get back to work"

SESSION_ENV_KEYS = ('DISPLAY', 'WAYLAND_DISPLAY', 'DBUS_SESSION_BUS_ADDRESS', 'XDG_RUNTIME_DIR')


def find_session_env(username: Optional[str] = None) -> dict[str, str]:
    """
    Get environment variables needed for GUI from a user's session.

    Scans the user's processes for one that carries a display, so the daemon
    can reach the desktop even when started outside it.
    """
    if username is None:
        username = psutil.Process().username()

    env = {k: v for k, v in os.environ.items() if k in SESSION_ENV_KEYS}
    if 'DISPLAY' in env or 'WAYLAND_DISPLAY' in env:
        return env

    for proc in psutil.process_iter(['pid', 'username', 'environ']):
        try:
            if proc.info['username'] != username:
                continue
            penv = proc.info.get('environ') or {}
            if 'DISPLAY' in penv or 'WAYLAND_DISPLAY' in penv:
                env.update({k: v for k, v in penv.items() if k in SESSION_ENV_KEYS})
                return env
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue

    return env


@runtime_checkable
class InterruptionBackend(Protocol):
    """Protocol for interruption delivery backends."""

    @property
    def name(self) -> str:
        """Backend identifier for logging."""
        ...

    def is_available(self) -> bool:
        """Check if this backend can deliver an interruption."""
        ...

    def open(self, title: str, message: str) -> bool:
        """Show the interruption. Returns True on success."""
        ...


class BrowserPageBackend:
    """Opens the alert page in a new browser tab."""

    def __init__(self, alert_url: Optional[str]):
        self.alert_url = alert_url

    @property
    def name(self) -> str:
        return "browser"

    def is_available(self) -> bool:
        return bool(self.alert_url)

    def open(self, title: str, message: str) -> bool:
        try:
            opened = webbrowser.open_new_tab(self.alert_url)
        except webbrowser.Error as e:
            log.warning(f"Could not open alert page {self.alert_url}: {e}")
            return False
        if not opened:
            log.warning(f"No browser accepted alert page {self.alert_url}")
        return opened


class NotifySendBackend:
    """
    Critical desktop notification using notify-send.

    When a target user is given, runs notify-send as that user via runuser
    so a root daemon can reach the user's session.
    """

    def __init__(self, username: Optional[str] = None, app_name: str = APP_NAME):
        self.username = username
        self.app_name = app_name

    @property
    def name(self) -> str:
        if self.username:
            return f"notify-send@{self.username}"
        return "notify-send"

    def is_available(self) -> bool:
        return shutil.which("notify-send") is not None

    def open(self, title: str, message: str) -> bool:
        cmd = [
            "notify-send",
            "--app-name", self.app_name,
            "--urgency", "critical",
            "--icon", "dialog-warning",
            title,
            message,
        ]
        if self.username:
            cmd = ["runuser", "-u", self.username, "--"] + cmd

        env = os.environ.copy()
        env.update(find_session_env(self.username))

        try:
            result = subprocess.run(cmd, env=env, capture_output=True, timeout=5)
        except subprocess.TimeoutExpired:
            log.warning("notify-send timed out")
            return False
        except OSError as e:
            log.error(f"Failed to run notify-send: {e}")
            return False

        if result.returncode != 0:
            log.warning(f"notify-send failed: {result.stderr.decode(errors='replace')}")
            return False
        return True


class LogOnlyBackend:
    """Fallback backend that just logs the interruption."""

    @property
    def name(self) -> str:
        return "log"

    def is_available(self) -> bool:
        return True

    def open(self, title: str, message: str) -> bool:
        log.warning(f"[INTERRUPTION] {title}: {message}")
        return True


class InterruptionPresenter:
    """
    Opens interruptions through the first backend that succeeds.

    Never raises: a failed open is logged and reported as False, and the
    next threshold crossing simply tries again.
    """

    def __init__(self, store: KeyValueStore, backends: list[InterruptionBackend] = None):
        self.store = store
        self.backends = backends if backends is not None else [LogOnlyBackend()]
        self.last_backend: Optional[str] = None

    @classmethod
    def from_config(cls, store: KeyValueStore, alert_url: Optional[str] = None,
                    notify_user: Optional[str] = None) -> "InterruptionPresenter":
        return cls(store, [
            BrowserPageBackend(alert_url),
            NotifySendBackend(notify_user),
            LogOnlyBackend(),
        ])

    async def _message(self) -> str:
        try:
            values = await self.store.get([SETTINGS_KEY])
        except StoreError as e:
            log.warning(f"Could not read alert message, using default: {e}")
            values = {}
        return Configuration.from_dict(values.get(SETTINGS_KEY)).interruption_message

    async def open_interruption(self) -> bool:
        """Show the interruption. Returns True if some backend delivered it."""
        message = await self._message()

        for backend in self.backends:
            if not backend.is_available():
                continue
            try:
                delivered = await asyncio.to_thread(backend.open, ALERT_TITLE, message)
            except Exception as e:
                log.error(f"Backend {backend.name} failed: {e}", exc_info=True)
                continue
            if delivered:
                self.last_backend = backend.name
                log.info(f"Interruption opened via {backend.name}")
                return True

        log.error("Failed to open interruption: no backend delivered it")
        return False
