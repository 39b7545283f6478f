"""
CLI_MAIN
========

Command-line interface for the automaton.

Global Flags:
    --config PATH       Config file (default: ~/.automaton/automaton.json)
    --log-level LEVEL   Override the configured log level

Commands:
    run                 Start the automaton (agent loop + heartbeat) until stopped
    status              Show lifecycle state, balances and counters
    turns               List recent turns
    heartbeats          List heartbeat entries
    heartbeat-run       Run one heartbeat entry now
    wake                Ask a sleeping automaton to wake up
    inbox-add           Deliver a message to the automaton's inbox

Usage:
    python -m automaton_core.cli run
    python -m automaton_core.cli run --cycles 1
    python -m automaton_core.cli status --json
    python -m automaton_core.cli inbox-add alice "Are you there?"
    python -m automaton_core.cli wake "manual poke"
"""

import argparse
import json
import sys
from typing import Dict, List, Optional

from ..config.loader import AutomatonConfig, ConfigError, load_config
from ..context import AutomatonIdentity
from ..inference.ollama import OllamaClient
from ..logging_config import setup_logging
from ..loop import AgentLoop
from ..observability import LoopEvents, log_state_change, log_turn_complete
from ..runtime import AutomatonRuntime
from ..scheduler.config import load_heartbeat_config, sync_heartbeat_to_store
from ..scheduler.heartbeat import HeartbeatScheduler
from ..state.keys import CoordinationKeys, Role
from ..state.records import InboxMessage, new_ulid, utc_now_iso
from ..state.store import StateStore
from ..survival import FinancialGate, format_credits
from ..tools.base import ToolRegistry
from ..tools.builtin import create_builtin_tools


# ============================================================================
# WIRING
# ============================================================================

def open_store(config: AutomatonConfig) -> StateStore:
    return StateStore(config.db_path)


def build_runtime(config: AutomatonConfig, store: StateStore) -> AutomatonRuntime:
    """Wire the agent loop, heartbeat and runtime host from ``config``."""
    if config.inference.provider != "ollama":
        raise ConfigError(
            f"Unsupported inference provider '{config.inference.provider}' (supported: ollama)"
        )

    identity = AutomatonIdentity.load(store, default_name=config.name)
    if not identity.creator_address and config.creator_address:
        identity.creator_address = config.creator_address
    identity.save(store)

    gate = FinancialGate(thresholds=config.survival)

    inference = OllamaClient(
        host=config.inference.host,
        model=config.inference.model,
        max_tokens=config.inference.max_tokens,
        low_compute_model=config.inference.low_compute_model or None,
        timeout=config.inference.timeout_seconds,
    )

    registry = ToolRegistry()
    for tool in create_builtin_tools(store, CoordinationKeys(store, Role.AGENT_LOOP), gate):
        registry.register(tool)

    events = LoopEvents()
    events.subscribe(on_state_change=log_state_change, on_turn_complete=log_turn_complete)

    loop = AgentLoop(
        store=store,
        inference=inference,
        financial_gate=gate,
        tool_registry=registry,
        identity=identity,
        genesis_prompt=config.genesis_prompt,
        skills=config.skills,
        events=events,
        unmetered=config.unmetered,
    )

    sync_heartbeat_to_store(load_heartbeat_config(config.heartbeat.config_path), store)
    heartbeat = HeartbeatScheduler(
        store,
        financial_gate=gate,
        tick_interval=config.heartbeat.tick_interval_seconds,
    )

    return AutomatonRuntime(loop, store, heartbeat=heartbeat)


# ============================================================================
# COMMANDS
# ============================================================================

def cli_run(config: AutomatonConfig, cycles: Optional[int] = None) -> None:
    store = open_store(config)
    try:
        runtime = build_runtime(config, store)
        runtime.install_signal_handlers()
        runtime.run_forever(max_cycles=cycles)
    finally:
        store.close()


def cli_status(config: AutomatonConfig) -> Dict:
    store = open_store(config)
    try:
        keys = CoordinationKeys(store, Role.RUNTIME)
        start_time = keys.get_start_time()
        sleep_until = keys.get_sleep_until()
        transactions = store.get_recent_transactions(1)
        return {
            "name": store.get_identity("name") or config.name,
            "state": keys.get_agent_state().value,
            "turns": store.get_turn_count(),
            "unread_messages": store.count_unprocessed_inbox_messages(),
            "start_time": start_time.isoformat() if start_time else None,
            "sleep_until": sleep_until.isoformat() if sleep_until else None,
            "wake_request": keys.get_wake_request(),
            "last_credit_check": transactions[0].amount_cents if transactions else None,
            "heartbeats": sum(1 for h in store.get_heartbeat_entries() if h.enabled),
            "model": config.inference.model,
            "unmetered": config.unmetered,
        }
    finally:
        store.close()


def cli_turns(config: AutomatonConfig, limit: int = 10) -> List[Dict]:
    store = open_store(config)
    try:
        return [turn.to_dict() for turn in store.get_recent_turns(limit)]
    finally:
        store.close()


def cli_heartbeats(config: AutomatonConfig) -> List[Dict]:
    store = open_store(config)
    try:
        sync_heartbeat_to_store(load_heartbeat_config(config.heartbeat.config_path), store)
        return [entry.to_dict() for entry in store.get_heartbeat_entries()]
    finally:
        store.close()


def cli_heartbeat_run(config: AutomatonConfig, name: str) -> Dict:
    store = open_store(config)
    try:
        sync_heartbeat_to_store(load_heartbeat_config(config.heartbeat.config_path), store)
        scheduler = HeartbeatScheduler(store, financial_gate=FinancialGate(thresholds=config.survival))
        try:
            reason = scheduler.run_now(name)
        except KeyError as e:
            return {"error": str(e)}
        return {"name": name, "wake_request": reason}
    finally:
        store.close()


def cli_wake(config: AutomatonConfig, reason: str) -> Dict:
    """Post a wake request the way a heartbeat task would."""
    store = open_store(config)
    try:
        CoordinationKeys(store, Role.HEARTBEAT).request_wake(reason)
        return {"message": f"Wake requested: {reason}"}
    finally:
        store.close()


def cli_inbox_add(config: AutomatonConfig, sender: str, content: str,
                  reply_to: Optional[str] = None) -> Dict:
    store = open_store(config)
    try:
        message = InboxMessage(
            id=new_ulid(),
            sender=sender,
            content=content,
            received_at=utc_now_iso(),
            reply_to=reply_to,
        )
        store.insert_inbox_message(message)
        return {"id": message.id, "message": f"Delivered message from {sender}"}
    finally:
        store.close()


# ============================================================================
# MAIN
# ============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="automaton",
        description="Autonomous agent runtime",
    )
    parser.add_argument("--config", "-c", help="Path to automaton.json")
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING, ERROR")

    subparsers = parser.add_subparsers(dest="command")

    run_parser = subparsers.add_parser("run", help="Start the automaton")
    run_parser.add_argument("--cycles", type=int, default=None,
                            help="Stop after N agent-loop runs (default: run forever)")

    status_parser = subparsers.add_parser("status", help="Show status")
    status_parser.add_argument("--json", "-j", action="store_true", help="Output as JSON")

    turns_parser = subparsers.add_parser("turns", help="List recent turns")
    turns_parser.add_argument("--limit", "-l", type=int, default=10, help="Max turns to show")
    turns_parser.add_argument("--json", "-j", action="store_true", help="Output as JSON")

    subparsers.add_parser("heartbeats", help="List heartbeat entries")

    hb_run_parser = subparsers.add_parser("heartbeat-run", help="Run a heartbeat entry now")
    hb_run_parser.add_argument("name", help="Heartbeat entry name")

    wake_parser = subparsers.add_parser("wake", help="Wake a sleeping automaton")
    wake_parser.add_argument("reason", nargs="?", default="manual wake", help="Why")

    inbox_parser = subparsers.add_parser("inbox-add", help="Deliver an inbox message")
    inbox_parser.add_argument("sender", help="Sender address or name")
    inbox_parser.add_argument("content", help="Message text")
    inbox_parser.add_argument("--reply-to", help="Message ID this replies to")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    if args.log_level:
        config.log_level = args.log_level.upper()

    if args.command == "run":
        setup_logging(config.log_level, config.log_file or None)
        try:
            cli_run(config, cycles=args.cycles)
        except ConfigError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 2

    elif args.command == "status":
        status = cli_status(config)
        if args.json:
            print(json.dumps(status, indent=2))
        else:
            print(f"\n{status['name']} ({status['state']})")
            print("=" * 40)
            print(f"  Turns:            {status['turns']}")
            print(f"  Unread messages:  {status['unread_messages']}")
            print(f"  Started:          {status['start_time'] or '-'}")
            print(f"  Sleeping until:   {status['sleep_until'] or '-'}")
            print(f"  Wake request:     {status['wake_request'] or '-'}")
            if status["last_credit_check"] is not None:
                print(f"  Last credits:     {format_credits(status['last_credit_check'])}")
            print(f"  Heartbeats:       {status['heartbeats']} active")
            print(f"  Model:            {status['model']}{' (unmetered)' if status['unmetered'] else ''}")

    elif args.command == "turns":
        turns = cli_turns(config, args.limit)
        if args.json:
            print(json.dumps(turns, indent=2))
        elif turns:
            for turn in turns:
                tools = ", ".join(tc["name"] for tc in turn["tool_calls"]) or "-"
                print(f"  {turn['timestamp'][:19]} [{turn['state']}] tools: {tools} "
                      f"({turn['token_usage']['total_tokens']} tokens, {turn['cost_cents']}c)")
        else:
            print("No turns yet.")

    elif args.command == "heartbeats":
        try:
            entries = cli_heartbeats(config)
        except ConfigError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 2
        for entry in entries:
            flag = "on " if entry["enabled"] else "off"
            print(f"  [{flag}] {entry['name']:<20} {entry['schedule']:<16} {entry['task']:<16} "
                  f"last: {entry['last_run'] or '-'}")

    elif args.command == "heartbeat-run":
        result = cli_heartbeat_run(config, args.name)
        if "error" in result:
            print(f"Error: {result['error']}")
            return 1
        print(f"Ran {result['name']}. Wake request: {result['wake_request'] or 'none'}")

    elif args.command == "wake":
        print(cli_wake(config, args.reason)["message"])

    elif args.command == "inbox-add":
        result = cli_inbox_add(config, args.sender, args.content, args.reply_to)
        print(f"{result['message']} ({result['id']})")

    return 0


if __name__ == "__main__":
    sys.exit(main())
