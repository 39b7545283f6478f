"""Tests for the SQLite state store."""

from automaton_core.state.records import (
    AgentState,
    AgentTurn,
    HeartbeatEntry,
    InboxMessage,
    InputSource,
    TokenUsage,
    ToolCallResult,
    TurnInput,
    new_ulid,
)
from automaton_core.state.store import StateStore


def make_turn(turn_id, timestamp, **kwargs):
    return AgentTurn(id=turn_id, timestamp=timestamp, state=AgentState.RUNNING, **kwargs)


class TestTurns:
    def test_insert_and_fetch(self, store):
        turn = make_turn(
            "01TURN",
            "2026-01-01T00:00:00.000Z",
            input=TurnInput(content="hello", source=InputSource.USER),
            thinking="thinking...",
            tool_calls=[ToolCallResult(id="call_0", name="echo", arguments={"message": "hi"}, result="Echo: hi")],
            token_usage=TokenUsage(prompt_tokens=10, completion_tokens=5),
            cost_cents=3,
        )
        store.insert_turn(turn)

        loaded = store.get_turn_by_id("01TURN")
        assert loaded.input.content == "hello"
        assert loaded.input.source == InputSource.USER
        assert loaded.token_usage.total_tokens == 15
        assert loaded.tool_calls[0].arguments == {"message": "hi"}
        assert loaded.cost_cents == 3
        assert store.get_turn_count() == 1

    def test_recent_turns_oldest_first(self, store):
        for i in range(5):
            store.insert_turn(make_turn(f"T{i}", f"2026-01-01T00:00:0{i}.000Z"))

        recent = store.get_recent_turns(3)
        assert [t.id for t in recent] == ["T2", "T3", "T4"]

    def test_missing_turn(self, store):
        assert store.get_turn_by_id("nope") is None

    def test_tool_calls_for_turn(self, store):
        store.insert_turn(make_turn("T1", "2026-01-01T00:00:00.000Z"))
        store.insert_tool_call("T1", ToolCallResult(id="call_0", name="a", result="ok"))
        store.insert_tool_call("T1", ToolCallResult(id="call_1", name="b", error="boom"))

        calls = store.get_tool_calls_for_turn("T1")
        assert [c.name for c in calls] == ["a", "b"]
        assert calls[1].error == "boom"
        assert not calls[1].succeeded


class TestKV:
    def test_last_write_wins(self, store):
        store.set_kv("k", "1")
        store.set_kv("k", "2")
        assert store.get_kv("k") == "2"

    def test_delete(self, store):
        store.set_kv("a", "1")
        store.set_kv("b", "2")
        store.delete_kv("a")
        assert store.get_kv("a") is None
        store.delete_kv_many(["b", "missing"])
        assert store.get_kv("b") is None

    def test_consume_clears_companions(self, store):
        store.set_kv("wake_request", "inbox")
        store.set_kv("sleep_until", "2026-01-01T00:00:00.000Z")

        assert store.consume_kv("wake_request", also_clear=["sleep_until"]) == "inbox"
        assert store.get_kv("wake_request") is None
        assert store.get_kv("sleep_until") is None

    def test_consume_missing_leaves_companions(self, store):
        store.set_kv("sleep_until", "2026-01-01T00:00:00.000Z")
        assert store.consume_kv("wake_request", also_clear=["sleep_until"]) is None
        assert store.get_kv("sleep_until") is not None

    def test_agent_state_defaults_to_setup(self, store):
        assert store.get_agent_state() == AgentState.SETUP
        store.set_agent_state(AgentState.SLEEPING)
        assert store.get_agent_state() == AgentState.SLEEPING

    def test_unknown_agent_state_reads_as_setup(self, store):
        store.set_kv("agent_state", "zombie")
        assert store.get_agent_state() == AgentState.SETUP


class TestInbox:
    def test_insert_is_idempotent(self, store):
        msg = InboxMessage(id="m1", sender="alice", content="hi")
        assert store.insert_inbox_message(msg) is True
        assert store.insert_inbox_message(msg) is False
        assert store.count_unprocessed_inbox_messages() == 1

    def test_unprocessed_oldest_first_with_limit(self, store):
        for i in range(4):
            store.insert_inbox_message(InboxMessage(
                id=f"m{i}", sender="bob", content=str(i),
                received_at=f"2026-01-01T00:00:0{i}.000Z",
            ))
        batch = store.get_unprocessed_inbox_messages(2)
        assert [m.id for m in batch] == ["m0", "m1"]

    def test_mark_processed_once(self, store):
        store.insert_inbox_message(InboxMessage(id="m1", sender="alice", content="hi"))
        assert store.mark_inbox_message_processed("m1") is True
        assert store.mark_inbox_message_processed("m1") is False
        assert store.mark_inbox_message_processed("missing") is False
        assert store.count_unprocessed_inbox_messages() == 0


class TestHeartbeatEntries:
    def test_upsert_and_update_last_run(self, store):
        store.upsert_heartbeat_entry(HeartbeatEntry(name="ping", schedule="every 1m", task="heartbeat_ping"))
        store.upsert_heartbeat_entry(HeartbeatEntry(
            name="ping", schedule="every 5m", task="heartbeat_ping", params={"x": 1},
        ))

        entries = store.get_heartbeat_entries()
        assert len(entries) == 1
        assert entries[0].schedule == "every 5m"
        assert entries[0].params == {"x": 1}

        store.update_heartbeat_last_run("ping", "2026-01-01T00:00:00.000Z", next_run="2026-01-01T00:05:00.000Z")
        entry = store.get_heartbeat_entry("ping")
        assert entry.last_run == "2026-01-01T00:00:00.000Z"
        assert entry.next_run == "2026-01-01T00:05:00.000Z"


class TestDurability:
    def test_reopen_sees_committed_state(self, tmp_path):
        path = str(tmp_path / "state.db")
        first = StateStore(path)
        first.set_kv("sleep_until", "2026-01-01T00:00:00.000Z")
        first.set_identity("name", "bot")
        first.close()

        second = StateStore(path)
        try:
            assert second.get_kv("sleep_until") == "2026-01-01T00:00:00.000Z"
            assert second.get_identity("name") == "bot"
        finally:
            second.close()

    def test_wal_mode(self, store):
        with store._engine.connect() as conn:
            assert conn.exec_driver_sql("PRAGMA journal_mode").scalar() == "wal"

    def test_snapshot(self, store):
        snap = store.snapshot()
        assert snap["agent_state"] == "setup"
        assert snap["turn_count"] == 0


class TestIds:
    def test_ulids_are_sortable_and_increasing(self):
        ids = [new_ulid() for _ in range(50)]
        assert all(len(i) == 26 for i in ids)
        assert ids == sorted(ids)
        assert len(set(ids)) == len(ids)
