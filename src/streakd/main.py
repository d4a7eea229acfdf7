#!/usr/bin/env python3
"""
streakd - distraction streak daemon

Counts consecutive visits to distracting sites and interrupts once the
streak gets too long.
"""

import argparse
import asyncio
import logging
import signal
import sys

from .config import (
    DEFAULT_CONFIG,
    DaemonConfig,
    TrackedSiteRule,
    clamp_threshold,
    default_rules,
    new_rule_id,
)
from .db import (
    SETTINGS_KEY,
    STATE_KEYS,
    KeyValueStore,
    StoreError,
    configuration_from_values,
    initialize_defaults,
    state_from_values,
)
from .notify import InterruptionPresenter
from .orchestrator import ControlMessage, EventOrchestrator, OrchestratorContext
from .server import StreakServer, send_request

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(message)s'
)
log = logging.getLogger("streakd")


def format_count(current: int, threshold: int) -> str:
    return f"{current} of {threshold}"


def format_progress(current: int, threshold: int) -> str:
    """Progress toward the threshold, e.g. '30% (3/10)'."""
    percent = min(100, current / threshold * 100) if threshold else 100
    return f"{round(percent)}% ({current}/{threshold})"


def format_site_type(site_type) -> str:
    if not site_type:
        return "Not tracking"
    return f"Tracking: {site_type.replace('_', ' ', 1)}"


# --- Daemon ---

async def run_daemon(config: DaemonConfig):
    """Run the socket server until SIGTERM/SIGINT."""
    store = KeyValueStore(config.db_path)
    initialize_defaults(store)

    presenter = InterruptionPresenter.from_config(
        store, alert_url=config.alert_url, notify_user=config.notify_user
    )
    context = OrchestratorContext(store=store, presenter=presenter)
    orchestrator = EventOrchestrator(context)
    server = StreakServer(orchestrator, config.socket_path)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(signum, stop.set)

    await server.start()
    log.info(f"streakd started (db: {config.db_path})")
    serve = asyncio.create_task(server.serve_forever())
    try:
        await stop.wait()
        log.info("Received shutdown signal, shutting down...")
    finally:
        serve.cancel()
        await server.stop()
        orchestrator.close()
    log.info("streakd shutdown complete")


def cmd_run(args):
    config = DaemonConfig.load(args.config)
    if args.db:
        config.db_path = args.db
    if args.socket:
        config.socket_path = args.socket
    logging.getLogger().setLevel(config.log_level)
    asyncio.run(run_daemon(config))


# --- Commands talking to the daemon ---

CONTROL_COMMANDS = {
    'reset': ControlMessage.RESET_COUNTER,
    'ack': ControlMessage.ALERT_ACKNOWLEDGED,
    'dismiss': ControlMessage.ALERT_DISMISSED,
    'test-alert': ControlMessage.TEST_ALERT,
}


def cmd_control(args, socket_path: str):
    message = CONTROL_COMMANDS[args.command]
    try:
        reply = asyncio.run(send_request(socket_path, {'type': message.value}))
    except (OSError, ConnectionError) as e:
        print(f"Error: Cannot reach streakd at {socket_path}: {e}", file=sys.stderr)
        print("Is the daemon running? Try: streakd run", file=sys.stderr)
        sys.exit(1)

    if not reply.get('ok'):
        print(f"Daemon reported failure: {reply.get('error', 'unknown error')}", file=sys.stderr)
        sys.exit(1)
    print("OK")


# --- Commands working on the store directly ---

def open_store(db_path: str) -> KeyValueStore:
    try:
        return KeyValueStore(db_path)
    except StoreError as e:
        print(f"Error: {e}", file=sys.stderr)
        print("Try: sudo streakd ...", file=sys.stderr)
        sys.exit(1)


def cmd_status(args, store: KeyValueStore):
    """Show the current streak."""
    values = store.get_sync((SETTINGS_KEY,) + STATE_KEYS)
    settings = configuration_from_values(values)
    state = state_from_values(values)

    print("Distraction streak")
    print(f"   Count:    {format_count(state.consecutive_count, settings.threshold)}")
    print(f"   Progress: {format_progress(state.consecutive_count, settings.threshold)}")
    print(f"   {format_site_type(state.last_site_type)}")
    if state.snooze_remaining:
        print(f"   Snoozed:  next {state.snooze_remaining} alerts ignored")


def cmd_sites(args, store: KeyValueStore):
    """Manage tracked sites."""
    settings = configuration_from_values(store.get_sync([SETTINGS_KEY]))

    if args.action == "list":
        print(f"{'ID':<30} {'On':<4} Pattern")
        print("-" * 70)
        for rule in settings.rules:
            print(f"{rule.id:<30} {'yes' if rule.enabled else 'no':<4} {rule.pattern}")
        return

    if args.action == "add":
        pattern = args.pattern.strip()
        if not pattern:
            raise ValueError("Pattern cannot be empty")
        rule_id = args.id or new_rule_id(len(settings.rules))
        if settings.find_rule(rule_id):
            raise ValueError(f"A site with id {rule_id} already exists")
        settings.rules.append(TrackedSiteRule(pattern=pattern, id=rule_id))
        print(f"Added {pattern} as {rule_id}")
    else:
        rule = settings.find_rule(args.id)
        if rule is None:
            raise ValueError(f"No tracked site with id {args.id}")

        if args.action == "enable":
            rule.enabled = True
            print(f"Enabled {rule.id}")
        elif args.action == "disable":
            rule.enabled = False
            print(f"Disabled {rule.id}")
        elif args.action == "delete":
            settings.rules.remove(rule)
            print(f"Deleted {rule.id}")
            if not settings.rules:
                settings.rules = default_rules()
                print("No sites left, restored defaults")

    store.set_sync({SETTINGS_KEY: settings.to_dict()})


def cmd_threshold(args, store: KeyValueStore):
    settings = configuration_from_values(store.get_sync([SETTINGS_KEY]))
    settings.threshold = clamp_threshold(args.value)
    store.set_sync({SETTINGS_KEY: settings.to_dict()})
    print(f"Threshold set to {settings.threshold}")


def cmd_message(args, store: KeyValueStore):
    settings = configuration_from_values(store.get_sync([SETTINGS_KEY]))
    settings.interruption_message = args.text
    store.set_sync({SETTINGS_KEY: settings.to_dict()})
    print("Alert message updated")


def main(argv=None):
    examples = """
Examples:
  # Run the daemon (usually via systemd)
  streakd run

  # Check the current streak
  streakd status

  # Track another site, then list everything tracked
  streakd sites add "reddit.com/r/*" --id reddit
  streakd sites list

  # Interrupt after 5 visits in a row
  streakd threshold 5

  # Back to work: clear the streak
  streakd reset
"""
    parser = argparse.ArgumentParser(
        description="Distraction streak daemon",
        epilog=examples,
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    parser.add_argument("-c", "--config", default=DEFAULT_CONFIG, help="Path to config file")
    parser.add_argument("--db", help="Path to database (overrides config)")
    parser.add_argument("--socket", help="Path to daemon socket (overrides config)")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("run", help="Run the daemon")
    subparsers.add_parser("status", help="Show the current streak")
    subparsers.add_parser("reset", help="Reset the counter")
    subparsers.add_parser("ack", help="Acknowledge the alert (back to work)")
    subparsers.add_parser("dismiss", help="Dismiss alerts for a while")
    subparsers.add_parser("test-alert", help="Open a test interruption")

    sites_parser = subparsers.add_parser("sites", help="Manage tracked sites")
    sites_sub = sites_parser.add_subparsers(dest="action")
    sites_sub.add_parser("list", help="List tracked sites")

    add_site = sites_sub.add_parser("add", help="Track a site")
    add_site.add_argument("pattern", help="Pattern on host + path, '*' matches anything")
    add_site.add_argument("--id", help="Site type id (default: generated)")

    for action, help_text in (("enable", "Enable a site"),
                              ("disable", "Disable a site"),
                              ("delete", "Delete a site")):
        action_parser = sites_sub.add_parser(action, help=help_text)
        action_parser.add_argument("id", help="Site id")

    threshold_parser = subparsers.add_parser("threshold", help="Set visits in a row before interrupting")
    threshold_parser.add_argument("value", type=int, help="Threshold (minimum 1)")

    message_parser = subparsers.add_parser("message", help="Set the interruption message")
    message_parser.add_argument("text", help="Message text")

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return

    try:
        if args.command == "run":
            cmd_run(args)
            return

        config = DaemonConfig.load(args.config)
        db_path = args.db or config.db_path
        socket_path = args.socket or config.socket_path

        if args.command in CONTROL_COMMANDS:
            cmd_control(args, socket_path)
        elif args.command == "status":
            cmd_status(args, open_store(db_path))
        elif args.command == "sites":
            if args.action:
                cmd_sites(args, open_store(db_path))
            else:
                sites_parser.print_help()
        elif args.command == "threshold":
            cmd_threshold(args, open_store(db_path))
        elif args.command == "message":
            cmd_message(args, open_store(db_path))
    except (ValueError, StoreError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
