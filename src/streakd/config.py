"""
Configuration for streakd.

Two layers:
- DaemonConfig: how the daemon runs (paths, logging, presenter), from YAML.
- Configuration: what gets tracked (threshold, rules, message), stored in
  the key-value store under the 'settings' key and edited from the CLI.
"""

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

log = logging.getLogger("streakd.config")

# Default paths
DEFAULT_CONFIG = "/etc/streakd/config.yaml"
DEFAULT_DB_PATH = "/var/lib/streakd/streakd.db"
DEFAULT_SOCKET_PATH = "/run/streakd/streakd.sock"

DEFAULT_THRESHOLD = 10
DEFAULT_MESSAGE = "What are you doing!? You're wasting time. GET TO WORK!"
DEFAULT_DISMISS_SNOOZE = 20

DEFAULT_SITES = [
    {'pattern': 'youtube.com/shorts/*', 'enabled': True, 'id': 'youtube_shorts'},
    {'pattern': 'tiktok.com/*', 'enabled': True, 'id': 'tiktok'},
    {'pattern': 'instagram.com/*', 'enabled': True, 'id': 'instagram'},
]


@dataclass
class TrackedSiteRule:
    """A tracked site: wildcard pattern plus the id used as its site type."""
    pattern: str
    id: str
    enabled: bool = True

    @classmethod
    def from_dict(cls, data: dict) -> Optional["TrackedSiteRule"]:
        """Build a rule from its stored form. Returns None if unusable."""
        if not isinstance(data, dict):
            return None
        pattern = data.get('pattern')
        if not isinstance(pattern, str):
            return None
        rule_id = data.get('id') or pattern
        enabled = data.get('enabled', True)
        if not isinstance(enabled, bool):
            enabled = True
        return cls(pattern=pattern, id=str(rule_id), enabled=enabled)

    def to_dict(self) -> dict:
        return {'pattern': self.pattern, 'enabled': self.enabled, 'id': self.id}


def default_rules() -> list[TrackedSiteRule]:
    return [TrackedSiteRule.from_dict(site) for site in DEFAULT_SITES]


def new_rule_id(index: int) -> str:
    """Id for a rule added by the user, e.g. 'custom_1718000000000_3'."""
    return f"custom_{int(time.time() * 1000)}_{index}"


def clamp_threshold(value: Any) -> int:
    """Coerce a stored threshold to a positive int."""
    if isinstance(value, bool):
        return DEFAULT_THRESHOLD
    try:
        threshold = int(value)
    except (TypeError, ValueError):
        return DEFAULT_THRESHOLD
    return max(1, threshold)


@dataclass
class Configuration:
    """Tracking settings, read fresh before every classification."""
    threshold: int = DEFAULT_THRESHOLD
    interruption_message: str = DEFAULT_MESSAGE
    rules: list[TrackedSiteRule] = field(default_factory=default_rules)
    dismiss_snooze: int = DEFAULT_DISMISS_SNOOZE
    # Keys we don't interpret (e.g. darkMode) are carried through untouched
    extra: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "Configuration":
        """
        Merge stored settings over the defaults.

        Anything missing or malformed falls back to its default; an empty
        or unusable site list falls back to the default sites.
        """
        if not isinstance(data, dict):
            if data is not None:
                log.warning(f"Malformed settings ({type(data).__name__}), using defaults")
            return cls()

        rules = []
        sites = data.get('trackedSites')
        if isinstance(sites, list):
            rules = [r for r in (TrackedSiteRule.from_dict(s) for s in sites) if r]
        if not rules:
            rules = default_rules()

        message = data.get('alertMessage')
        if not isinstance(message, str):
            message = DEFAULT_MESSAGE

        snooze = data.get('dismissSnooze', DEFAULT_DISMISS_SNOOZE)
        if isinstance(snooze, bool) or not isinstance(snooze, int) or snooze < 0:
            snooze = DEFAULT_DISMISS_SNOOZE

        known = {'threshold', 'alertMessage', 'trackedSites', 'dismissSnooze'}
        return cls(
            threshold=clamp_threshold(data.get('threshold', DEFAULT_THRESHOLD)),
            interruption_message=message,
            rules=rules,
            dismiss_snooze=snooze,
            extra={k: v for k, v in data.items() if k not in known},
        )

    def to_dict(self) -> dict:
        """Stored form, using the key names the browser side expects."""
        data = dict(self.extra)
        data.update({
            'threshold': self.threshold,
            'alertMessage': self.interruption_message,
            'trackedSites': [rule.to_dict() for rule in self.rules],
            'dismissSnooze': self.dismiss_snooze,
        })
        return data

    def find_rule(self, rule_id: str) -> Optional[TrackedSiteRule]:
        for rule in self.rules:
            if rule.id == rule_id:
                return rule
        return None


@dataclass
class DaemonConfig:
    """Daemon runtime settings loaded from YAML."""
    db_path: str = DEFAULT_DB_PATH
    socket_path: str = DEFAULT_SOCKET_PATH
    log_level: str = "INFO"
    alert_url: Optional[str] = None
    notify_user: Optional[str] = None

    @classmethod
    def load(cls, path: str = DEFAULT_CONFIG) -> "DaemonConfig":
        """Load configuration from YAML file, falling back to defaults."""
        config_path = Path(path)
        if not config_path.exists():
            log.warning(f"Config not found at {path}, using defaults")
            return cls()

        with open(config_path) as f:
            try:
                data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ValueError(f"Invalid YAML in {path}: {e}") from e
        if not isinstance(data, dict):
            raise ValueError(f"{path} must contain a mapping")

        daemon = data.get('daemon') or {}
        if not isinstance(daemon, dict):
            raise ValueError(f"'daemon' section in {path} must be a mapping")

        defaults = cls()
        log_level = str(daemon.get('log_level', defaults.log_level)).upper()
        if not isinstance(logging.getLevelName(log_level), int):
            raise ValueError(f"Unknown log_level {log_level!r} in {path}")

        return cls(
            db_path=str(daemon.get('db_path', defaults.db_path)),
            socket_path=str(daemon.get('socket_path', defaults.socket_path)),
            log_level=log_level,
            alert_url=daemon.get('alert_url'),
            notify_user=daemon.get('notify_user'),
        )
