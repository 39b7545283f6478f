"""
Heartbeat schedule file.

``heartbeat.json`` lists the entries the scheduler should run::

    {
      "entries": [
        {"name": "ping", "schedule": "every 15m", "task": "heartbeat_ping"},
        {"name": "credits", "schedule": "*/5 * * * *", "task": "check_credits"},
        {"name": "inbox", "schedule": "every 1m", "task": "check_inbox",
         "enabled": true, "params": {}}
      ]
    }

The file is the source of truth for *what* runs; the store keeps *when*
each entry last ran. ``sync_heartbeat_to_store`` merges the two.
"""

import json
import logging
from pathlib import Path
from typing import List, Optional

from ..config.loader import ConfigError
from ..state.records import HeartbeatEntry
from ..state.store import StateStore
from .heartbeat import HeartbeatScheduleError, parse_schedule

logger = logging.getLogger(__name__)


DEFAULT_HEARTBEAT_ENTRIES = [
    HeartbeatEntry(name="heartbeat_ping", schedule="every 15m", task="heartbeat_ping"),
    HeartbeatEntry(name="check_credits", schedule="*/5 * * * *", task="check_credits"),
    HeartbeatEntry(name="check_inbox", schedule="every 1m", task="check_inbox"),
]


def default_heartbeat_entries() -> List[HeartbeatEntry]:
    return [
        HeartbeatEntry(name=e.name, schedule=e.schedule, task=e.task)
        for e in DEFAULT_HEARTBEAT_ENTRIES
    ]


def load_heartbeat_config(path: Optional[str]) -> List[HeartbeatEntry]:
    """
    Read heartbeat entries from ``path``.

    A missing path (or file) yields the default entries. Malformed files
    and invalid schedules raise ``ConfigError``.
    """
    if not path or not Path(path).expanduser().exists():
        return default_heartbeat_entries()

    config_path = Path(path).expanduser()
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Could not read heartbeat config {config_path}: {e}") from e

    raw_entries = data.get("entries") if isinstance(data, dict) else None
    if not isinstance(raw_entries, list):
        raise ConfigError(f"Heartbeat config {config_path} needs an 'entries' list")

    entries = []
    seen = set()
    for raw in raw_entries:
        try:
            entry = HeartbeatEntry(
                name=raw["name"],
                schedule=raw["schedule"],
                task=raw["task"],
                enabled=bool(raw.get("enabled", True)),
                params=raw.get("params") or {},
            )
            parse_schedule(entry.schedule)
        except (KeyError, TypeError, HeartbeatScheduleError) as e:
            raise ConfigError(f"Invalid heartbeat entry {raw!r}: {e}") from e
        if entry.name in seen:
            raise ConfigError(f"Duplicate heartbeat entry name: {entry.name}")
        seen.add(entry.name)
        entries.append(entry)

    return entries


def save_heartbeat_config(entries: List[HeartbeatEntry], path: str) -> None:
    config_path = Path(path).expanduser()
    config_path.parent.mkdir(parents=True, exist_ok=True)
    data = {
        "entries": [
            {
                "name": e.name,
                "schedule": e.schedule,
                "task": e.task,
                "enabled": e.enabled,
                "params": e.params,
            }
            for e in entries
        ]
    }
    with open(config_path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)


def sync_heartbeat_to_store(entries: List[HeartbeatEntry], store: StateStore) -> None:
    """
    Upsert ``entries`` into the store.

    Run history is kept. A changed schedule clears ``next_run`` so it is
    recomputed from ``last_run``. Entries in the store but not in the
    file are disabled.
    """
    wanted = {e.name for e in entries}

    for entry in entries:
        existing = store.get_heartbeat_entry(entry.name)
        if existing is not None:
            entry.last_run = existing.last_run
            entry.next_run = existing.next_run if existing.schedule == entry.schedule else None
        store.upsert_heartbeat_entry(entry)

    for stale in store.get_heartbeat_entries():
        if stale.name not in wanted and stale.enabled:
            stale.enabled = False
            store.upsert_heartbeat_entry(stale)
            logger.info("[HEARTBEAT] Disabled %s (no longer configured)", stale.name)
