"""Tests for the heartbeat scheduler, its tasks and its config file."""

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from automaton_core.config.loader import ConfigError
from automaton_core.scheduler.config import (
    default_heartbeat_entries,
    load_heartbeat_config,
    save_heartbeat_config,
    sync_heartbeat_to_store,
)
from automaton_core.scheduler.heartbeat import (
    HeartbeatScheduleError,
    HeartbeatScheduler,
    is_due,
    next_run_after,
    parse_schedule,
)
from automaton_core.scheduler.tasks import (
    LAST_PING_KEY,
    LAST_TIER_KEY,
    check_credits,
    check_inbox,
    heartbeat_ping,
)
from automaton_core.scheduler.heartbeat import HeartbeatContext
from automaton_core.state.keys import CoordinationKeys, Role
from automaton_core.state.records import AgentState, HeartbeatEntry, InboxMessage, to_iso
from automaton_core.survival import FinancialGate


NOON = datetime(2026, 3, 1, 12, 1, tzinfo=timezone.utc)


# ============================================================================
# SCHEDULES
# ============================================================================

class TestParseSchedule:
    @pytest.mark.parametrize("text,seconds", [
        ("every 15m", 900),
        ("every 30s", 30),
        ("every 2h", 7200),
        ("every 1d", 86400),
        ("45", 45),
        ("5m", 300),
    ])
    def test_intervals(self, text, seconds):
        parsed = parse_schedule(text)
        assert parsed.type == "interval"
        assert parsed.interval_seconds == seconds

    def test_cron(self):
        parsed = parse_schedule("*/5 * * * *")
        assert parsed.type == "cron"
        assert parsed.cron_expression == "*/5 * * * *"

    @pytest.mark.parametrize("text", ["", "sometimes", "every 0m", "61 * * *", "* * * * * * *"])
    def test_invalid(self, text):
        with pytest.raises(HeartbeatScheduleError):
            parse_schedule(text)


class TestNextRun:
    def test_interval(self):
        assert next_run_after("every 15m", NOON) == NOON + timedelta(minutes=15)

    def test_cron(self):
        assert next_run_after("*/5 * * * *", NOON) == datetime(2026, 3, 1, 12, 5, tzinfo=timezone.utc)

    def test_never_run_is_due(self):
        assert is_due(HeartbeatEntry(name="x", schedule="every 1m", task="t"), NOON)

    def test_disabled_is_never_due(self):
        assert not is_due(HeartbeatEntry(name="x", schedule="every 1m", task="t", enabled=False), NOON)

    def test_next_run_decides(self):
        entry = HeartbeatEntry(name="x", schedule="every 1m", task="t",
                               last_run=to_iso(NOON), next_run=to_iso(NOON + timedelta(minutes=1)))
        assert not is_due(entry, NOON + timedelta(seconds=30))
        assert is_due(entry, NOON + timedelta(minutes=1))

    def test_falls_back_to_last_run(self):
        entry = HeartbeatEntry(name="x", schedule="every 10m", task="t", last_run=to_iso(NOON))
        assert not is_due(entry, NOON + timedelta(minutes=5))
        assert is_due(entry, NOON + timedelta(minutes=10))


# ============================================================================
# SCHEDULER
# ============================================================================

def add_entry(store, name, task, schedule="every 1m", **kwargs):
    store.upsert_heartbeat_entry(HeartbeatEntry(name=name, schedule=schedule, task=task, **kwargs))


class TestScheduler:
    def test_tick_runs_due_entries_and_records_runs(self, store):
        task = MagicMock(return_value=None)
        add_entry(store, "probe", "probe", schedule="every 5m")
        scheduler = HeartbeatScheduler(store, tasks={"probe": task})

        assert scheduler.tick(NOON) == ["probe"]
        task.assert_called_once()
        entry = store.get_heartbeat_entry("probe")
        assert entry.last_run == to_iso(NOON)
        assert entry.next_run == to_iso(NOON + timedelta(minutes=5))

        assert scheduler.tick(NOON + timedelta(minutes=1)) == []
        assert scheduler.tick(NOON + timedelta(minutes=5)) == ["probe"]

    def test_task_reason_becomes_wake_request(self, store):
        add_entry(store, "alarm", "alarm")
        scheduler = HeartbeatScheduler(store, tasks={"alarm": lambda ctx, params: "something happened"})

        scheduler.tick(NOON)
        assert store.get_kv("wake_request") == "something happened"

    def test_task_receives_params(self, store):
        task = MagicMock(return_value=None)
        add_entry(store, "probe", "probe", params={"threshold": 3})
        HeartbeatScheduler(store, tasks={"probe": task}).tick(NOON)

        ctx, params = task.call_args.args
        assert params == {"threshold": 3}
        assert ctx.keys.role == Role.HEARTBEAT

    def test_task_exception_is_contained(self, store):
        add_entry(store, "broken", "broken")
        add_entry(store, "ok", "ok")
        ok_task = MagicMock(return_value=None)

        def broken(ctx, params):
            raise RuntimeError("task bug")

        scheduler = HeartbeatScheduler(store, tasks={"broken": broken, "ok": ok_task})
        assert scheduler.tick(NOON) == ["broken", "ok"]
        ok_task.assert_called_once()
        assert store.get_heartbeat_entry("broken").last_run == to_iso(NOON)
        assert store.get_kv("wake_request") is None

    def test_unknown_task_still_advances(self, store):
        add_entry(store, "ghost", "no_such_task")
        scheduler = HeartbeatScheduler(store, tasks={})
        assert scheduler.tick(NOON) == ["ghost"]
        assert store.get_heartbeat_entry("ghost").last_run == to_iso(NOON)

    def test_invalid_schedule_skipped(self, store):
        add_entry(store, "bad", "probe", schedule="whenever",
                  next_run=to_iso(NOON - timedelta(minutes=1)))
        task = MagicMock()
        assert HeartbeatScheduler(store, tasks={"probe": task}).tick(NOON) == []
        task.assert_not_called()

    def test_disabled_entry_skipped(self, store):
        add_entry(store, "off", "probe", enabled=False)
        task = MagicMock()
        assert HeartbeatScheduler(store, tasks={"probe": task}).tick(NOON) == []

    def test_run_now(self, store):
        add_entry(store, "alarm", "alarm", last_run=to_iso(NOON), next_run=to_iso(NOON + timedelta(days=1)))
        scheduler = HeartbeatScheduler(store, tasks={"alarm": lambda ctx, params: "manual"})
        assert scheduler.run_now("alarm") == "manual"
        assert store.get_kv("wake_request") == "manual"

        with pytest.raises(KeyError):
            scheduler.run_now("missing")

    def test_start_and_stop(self, store):
        scheduler = HeartbeatScheduler(store, tasks={}, tick_interval=0.01)
        scheduler.start()
        assert scheduler.is_running()
        scheduler.stop()
        assert not scheduler.is_running()


# ============================================================================
# TASKS
# ============================================================================

@pytest.fixture
def make_context(store):
    def _make(credits=None):
        gate = None
        if credits is not None:
            gate = FinancialGate(credits_source=lambda: credits)
        return HeartbeatContext(store=store, keys=CoordinationKeys(store, Role.HEARTBEAT), financial_gate=gate)
    return _make


class TestHeartbeatPing:
    def test_records_ping_and_never_wakes(self, make_context, store):
        assert heartbeat_ping(make_context(), {}) is None
        assert store.get_kv(LAST_PING_KEY)


class TestCheckCredits:
    def test_without_gate_does_nothing(self, make_context, store):
        assert check_credits(make_context(), {}) is None
        assert store.get_recent_transactions(5) == []

    def test_gate_without_credit_source_does_nothing(self, store):
        ctx = HeartbeatContext(store=store, keys=CoordinationKeys(store, Role.HEARTBEAT),
                               financial_gate=FinancialGate())
        assert check_credits(ctx, {}) is None
        assert store.get_recent_transactions(5) == []
        assert store.get_kv(LAST_TIER_KEY) is None

    def test_logs_transaction_and_tier(self, make_context, store):
        assert check_credits(make_context(credits=10_000), {}) is None
        assert store.get_kv(LAST_TIER_KEY) == "normal"
        assert store.get_recent_transactions(5)[0].amount_cents == 10_000

    def test_wakes_dead_agent_when_credits_return(self, make_context, store):
        store.set_agent_state(AgentState.DEAD)
        assert check_credits(make_context(credits=0), {}) is None
        assert check_credits(make_context(credits=250), {}) == "Credits restored: $2.50"

    def test_wakes_on_tier_drop(self, make_context, store):
        store.set_agent_state(AgentState.SLEEPING)
        assert check_credits(make_context(credits=1000), {}) is None
        assert check_credits(make_context(credits=50), {}) == "Survival tier dropped from normal to critical"

    def test_tier_improvement_does_not_wake(self, make_context, store):
        store.set_agent_state(AgentState.SLEEPING)
        check_credits(make_context(credits=50), {})
        assert check_credits(make_context(credits=1000), {}) is None


class TestCheckInbox:
    def test_wakes_sleeping_agent_with_unread(self, make_context, store):
        store.set_agent_state(AgentState.SLEEPING)
        store.insert_inbox_message(InboxMessage(id="m1", sender="alice", content="hi"))
        store.insert_inbox_message(InboxMessage(id="m2", sender="bob", content="yo"))
        assert check_inbox(make_context(), {}) == "2 unread inbox message(s)"

    def test_quiet_when_empty(self, make_context, store):
        store.set_agent_state(AgentState.SLEEPING)
        assert check_inbox(make_context(), {}) is None

    def test_quiet_when_running(self, make_context, store):
        store.set_agent_state(AgentState.RUNNING)
        store.insert_inbox_message(InboxMessage(id="m1", sender="alice", content="hi"))
        assert check_inbox(make_context(), {}) is None


class TestBuiltinWiring:
    def test_default_entries_wake_sleeping_agent(self, store):
        sync_heartbeat_to_store(default_heartbeat_entries(), store)
        store.set_agent_state(AgentState.SLEEPING)
        store.insert_inbox_message(InboxMessage(id="m1", sender="alice", content="hi"))

        scheduler = HeartbeatScheduler(store, financial_gate=FinancialGate(credits_source=lambda: 10_000))
        ran = scheduler.tick(NOON)

        assert set(ran) == {"heartbeat_ping", "check_credits", "check_inbox"}
        assert store.get_kv("wake_request") == "1 unread inbox message(s)"


# ============================================================================
# CONFIG FILE
# ============================================================================

class TestHeartbeatConfig:
    def test_missing_file_gives_defaults(self, tmp_path):
        entries = load_heartbeat_config(str(tmp_path / "heartbeat.json"))
        assert [e.name for e in entries] == ["heartbeat_ping", "check_credits", "check_inbox"]
        assert load_heartbeat_config(None)[1].schedule == "*/5 * * * *"

    def test_save_and_load(self, tmp_path):
        path = str(tmp_path / "heartbeat.json")
        save_heartbeat_config([
            HeartbeatEntry(name="ping", schedule="every 5m", task="heartbeat_ping", params={"a": 1}),
        ], path)
        entries = load_heartbeat_config(path)
        assert entries[0].name == "ping"
        assert entries[0].params == {"a": 1}

    @pytest.mark.parametrize("content", [
        "not json",
        json.dumps({"nope": []}),
        json.dumps({"entries": [{"name": "x", "schedule": "whenever", "task": "t"}]}),
        json.dumps({"entries": [{"name": "x"}]}),
        json.dumps({"entries": [
            {"name": "x", "schedule": "every 1m", "task": "t"},
            {"name": "x", "schedule": "every 2m", "task": "t"},
        ]}),
    ])
    def test_invalid_files(self, tmp_path, content):
        path = tmp_path / "heartbeat.json"
        path.write_text(content)
        with pytest.raises(ConfigError):
            load_heartbeat_config(str(path))

    def test_sync_preserves_history_and_disables_stale(self, store):
        add_entry(store, "ping", "heartbeat_ping", schedule="every 15m",
                  last_run=to_iso(NOON), next_run=to_iso(NOON + timedelta(minutes=15)))
        add_entry(store, "old", "heartbeat_ping")

        sync_heartbeat_to_store([
            HeartbeatEntry(name="ping", schedule="every 15m", task="heartbeat_ping"),
        ], store)

        ping = store.get_heartbeat_entry("ping")
        assert ping.last_run == to_iso(NOON)
        assert ping.next_run == to_iso(NOON + timedelta(minutes=15))
        assert store.get_heartbeat_entry("old").enabled is False

    def test_sync_schedule_change_resets_next_run(self, store):
        add_entry(store, "ping", "heartbeat_ping", schedule="every 15m",
                  last_run=to_iso(NOON), next_run=to_iso(NOON + timedelta(minutes=15)))
        sync_heartbeat_to_store([
            HeartbeatEntry(name="ping", schedule="every 1m", task="heartbeat_ping"),
        ], store)

        ping = store.get_heartbeat_entry("ping")
        assert ping.last_run == to_iso(NOON)
        assert ping.next_run is None
