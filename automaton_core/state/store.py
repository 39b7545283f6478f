"""
STATE_STORE
===========

Durable, single-writer persistence for the automaton.

The store holds turns, tool-call records, a string key/value namespace,
inbox messages, heartbeat entries, identity values and a small transaction
log. It has no business logic. What it does guarantee:

- ``get_recent_turns`` returns turns in ascending timestamp order
  (ties broken by id, which is time-sortable).
- KV writes are last-write-wins and visible to the very next read.
- ``mark_inbox_message_processed`` is idempotent; a processed message is
  never returned by ``get_unprocessed_inbox_messages`` again.
- Every write is committed before the method returns, on a SQLite file in
  WAL mode with ``synchronous=FULL``, so it survives an unclean exit.

Each public method runs in its own transaction. Methods that must touch
several rows atomically (``delete_kv_many``, ``consume_kv``) do so inside a
single transaction.

Usage::

    store = StateStore("./data/automaton.db")
    store.set_kv("start_time", utc_now_iso())
    turns = store.get_recent_turns(20)
"""

import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from sqlalchemy import create_engine, delete, event, func, select, update
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from .models import (
    Base,
    HeartbeatEntryRow,
    IdentityRow,
    InboxMessageRow,
    KVRow,
    ToolCallRow,
    TransactionRow,
    TurnRow,
)
from .records import (
    AgentState,
    AgentTurn,
    HeartbeatEntry,
    InboxMessage,
    InputSource,
    TokenUsage,
    ToolCallResult,
    Transaction,
    TurnInput,
    utc_now_iso,
)

logger = logging.getLogger(__name__)

AGENT_STATE_KEY = "agent_state"


def _apply_sqlite_pragmas(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=FULL")
    cursor.execute("PRAGMA busy_timeout=5000")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class StateStore:
    """SQLite-backed state store (SQLAlchemy ORM)."""

    def __init__(self, db_path: str = ":memory:", echo: bool = False):
        """
        Open (and create if needed) the database.

        Args:
            db_path: Path to the SQLite file, or ``":memory:"`` for tests.
            echo: Log every SQL statement (debugging only).
        """
        self.db_path = db_path

        if db_path == ":memory:":
            # One shared connection, otherwise every checkout sees a new empty DB
            self._engine = create_engine(
                "sqlite://",
                echo=echo,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        else:
            Path(db_path).expanduser().parent.mkdir(parents=True, exist_ok=True)
            self._engine = create_engine(
                f"sqlite:///{Path(db_path).expanduser()}",
                echo=echo,
                connect_args={"check_same_thread": False},
            )

        event.listen(self._engine, "connect", _apply_sqlite_pragmas)
        Base.metadata.create_all(self._engine)
        self._session_maker = sessionmaker(self._engine, expire_on_commit=False)

    def _begin(self):
        """Context manager yielding a session that commits on exit."""
        return self._session_maker.begin()

    def close(self) -> None:
        self._engine.dispose()

    # ========================================================================
    # IDENTITY
    # ========================================================================

    def get_identity(self, key: str) -> Optional[str]:
        with self._begin() as session:
            row = session.get(IdentityRow, key)
            return row.value if row else None

    def set_identity(self, key: str, value: str) -> None:
        with self._begin() as session:
            session.merge(IdentityRow(key=key, value=value))

    # ========================================================================
    # TURNS
    # ========================================================================

    def insert_turn(self, turn: AgentTurn) -> None:
        """Append a turn. Turns are never updated after insertion."""
        with self._begin() as session:
            session.add(TurnRow(
                id=turn.id,
                timestamp=turn.timestamp,
                state=turn.state.value,
                input=turn.input.content if turn.input else None,
                input_source=turn.input.source.value if turn.input else None,
                thinking=turn.thinking,
                tool_calls=[tc.to_dict() for tc in turn.tool_calls],
                token_usage=turn.token_usage.to_dict(),
                cost_cents=turn.cost_cents,
            ))

    def get_recent_turns(self, limit: int) -> List[AgentTurn]:
        """Return the ``limit`` most recent turns, oldest first."""
        with self._begin() as session:
            rows = session.scalars(
                select(TurnRow)
                .order_by(TurnRow.timestamp.desc(), TurnRow.id.desc())
                .limit(limit)
            ).all()
            return [_turn_from_row(row) for row in reversed(rows)]

    def get_turn_by_id(self, turn_id: str) -> Optional[AgentTurn]:
        with self._begin() as session:
            row = session.get(TurnRow, turn_id)
            return _turn_from_row(row) if row else None

    def get_turn_count(self) -> int:
        with self._begin() as session:
            return session.scalar(select(func.count()).select_from(TurnRow)) or 0

    # ========================================================================
    # TOOL CALLS
    # ========================================================================

    def insert_tool_call(self, turn_id: str, call: ToolCallResult) -> None:
        with self._begin() as session:
            session.add(ToolCallRow(
                id=call.id,
                turn_id=turn_id,
                name=call.name,
                arguments=call.arguments,
                result=call.result,
                duration_ms=call.duration_ms,
                error=call.error,
                created_at=utc_now_iso(),
            ))

    def get_tool_calls_for_turn(self, turn_id: str) -> List[ToolCallResult]:
        with self._begin() as session:
            rows = session.scalars(
                select(ToolCallRow)
                .where(ToolCallRow.turn_id == turn_id)
                .order_by(ToolCallRow.seq)
            ).all()
            return [
                ToolCallResult(
                    id=row.id,
                    name=row.name,
                    arguments=row.arguments or {},
                    result=row.result or "",
                    duration_ms=row.duration_ms,
                    error=row.error,
                )
                for row in rows
            ]

    # ========================================================================
    # KEY-VALUE
    # ========================================================================

    def get_kv(self, key: str) -> Optional[str]:
        with self._begin() as session:
            row = session.get(KVRow, key)
            return row.value if row else None

    def set_kv(self, key: str, value: str) -> None:
        with self._begin() as session:
            session.merge(KVRow(key=key, value=value, updated_at=utc_now_iso()))

    def delete_kv(self, key: str) -> None:
        with self._begin() as session:
            session.execute(delete(KVRow).where(KVRow.key == key))

    def delete_kv_many(self, keys: Iterable[str]) -> None:
        """Delete several keys in one transaction."""
        keys = list(keys)
        if not keys:
            return
        with self._begin() as session:
            session.execute(delete(KVRow).where(KVRow.key.in_(keys)))

    def consume_kv(self, key: str, also_clear: Iterable[str] = ()) -> Optional[str]:
        """
        Read and delete ``key``; if it was set, delete ``also_clear`` too.

        All of it happens in one transaction, so a reader never observes
        ``key`` cleared while the companion keys are still set.

        Returns:
            The consumed value, or None if the key was not set.
        """
        with self._begin() as session:
            row = session.get(KVRow, key)
            if row is None:
                return None
            value = row.value
            session.execute(
                delete(KVRow).where(KVRow.key.in_([key, *also_clear]))
            )
            return value

    # ========================================================================
    # INBOX
    # ========================================================================

    def insert_inbox_message(self, message: InboxMessage) -> bool:
        """Insert a message unless its id already exists. Returns True if inserted."""
        with self._begin() as session:
            if session.get(InboxMessageRow, message.id) is not None:
                return False
            session.add(InboxMessageRow(
                id=message.id,
                from_address=message.sender,
                content=message.content,
                received_at=message.received_at or utc_now_iso(),
                reply_to=message.reply_to,
            ))
            return True

    def get_unprocessed_inbox_messages(self, limit: int) -> List[InboxMessage]:
        """Oldest unprocessed messages first."""
        with self._begin() as session:
            rows = session.scalars(
                select(InboxMessageRow)
                .where(InboxMessageRow.processed_at.is_(None))
                .order_by(InboxMessageRow.received_at.asc(), InboxMessageRow.id.asc())
                .limit(limit)
            ).all()
            return [_inbox_from_row(row) for row in rows]

    def count_unprocessed_inbox_messages(self) -> int:
        with self._begin() as session:
            return session.scalar(
                select(func.count())
                .select_from(InboxMessageRow)
                .where(InboxMessageRow.processed_at.is_(None))
            ) or 0

    def mark_inbox_message_processed(self, message_id: str) -> bool:
        """
        Mark a message processed. Idempotent: the first processed_at wins.

        Returns:
            True if this call changed the message, False if it was already
            processed or does not exist.
        """
        with self._begin() as session:
            result = session.execute(
                update(InboxMessageRow)
                .where(InboxMessageRow.id == message_id)
                .where(InboxMessageRow.processed_at.is_(None))
                .values(processed_at=utc_now_iso())
            )
            return result.rowcount > 0

    # ========================================================================
    # HEARTBEAT
    # ========================================================================

    def get_heartbeat_entries(self) -> List[HeartbeatEntry]:
        with self._begin() as session:
            rows = session.scalars(
                select(HeartbeatEntryRow).order_by(HeartbeatEntryRow.name)
            ).all()
            return [_heartbeat_from_row(row) for row in rows]

    def get_heartbeat_entry(self, name: str) -> Optional[HeartbeatEntry]:
        with self._begin() as session:
            row = session.get(HeartbeatEntryRow, name)
            return _heartbeat_from_row(row) if row else None

    def upsert_heartbeat_entry(self, entry: HeartbeatEntry) -> None:
        with self._begin() as session:
            session.merge(HeartbeatEntryRow(
                name=entry.name,
                schedule=entry.schedule,
                task=entry.task,
                enabled=entry.enabled,
                last_run=entry.last_run,
                next_run=entry.next_run,
                params=entry.params or {},
                updated_at=utc_now_iso(),
            ))

    def update_heartbeat_last_run(self, name: str, timestamp: str,
                                  next_run: Optional[str] = None) -> None:
        with self._begin() as session:
            session.execute(
                update(HeartbeatEntryRow)
                .where(HeartbeatEntryRow.name == name)
                .values(last_run=timestamp, next_run=next_run, updated_at=utc_now_iso())
            )

    # ========================================================================
    # TRANSACTIONS
    # ========================================================================

    def insert_transaction(self, txn: Transaction) -> None:
        with self._begin() as session:
            session.add(TransactionRow(
                id=txn.id,
                type=txn.type,
                amount_cents=txn.amount_cents,
                balance_after_cents=txn.balance_after_cents,
                description=txn.description,
                created_at=txn.timestamp or utc_now_iso(),
            ))

    def get_recent_transactions(self, limit: int) -> List[Transaction]:
        with self._begin() as session:
            rows = session.scalars(
                select(TransactionRow)
                .order_by(TransactionRow.created_at.desc(), TransactionRow.id.desc())
                .limit(limit)
            ).all()
            return [
                Transaction(
                    id=row.id,
                    type=row.type,
                    description=row.description,
                    amount_cents=row.amount_cents,
                    balance_after_cents=row.balance_after_cents,
                    timestamp=row.created_at,
                )
                for row in reversed(rows)
            ]

    # ========================================================================
    # AGENT STATE
    # ========================================================================

    def get_agent_state(self) -> AgentState:
        value = self.get_kv(AGENT_STATE_KEY)
        if not value:
            return AgentState.SETUP
        try:
            return AgentState(value)
        except ValueError:
            logger.warning("Unknown agent_state %r in store, treating as setup", value)
            return AgentState.SETUP

    def set_agent_state(self, state: AgentState) -> None:
        self.set_kv(AGENT_STATE_KEY, state.value)

    def snapshot(self) -> Dict:
        """Summary used by status reporting."""
        return {
            "db_path": self.db_path,
            "agent_state": self.get_agent_state().value,
            "turn_count": self.get_turn_count(),
            "unprocessed_inbox": self.count_unprocessed_inbox_messages(),
        }


# ============================================================================
# ROW CONVERSION
# ============================================================================

def _turn_from_row(row: TurnRow) -> AgentTurn:
    turn_input = None
    if row.input is not None:
        turn_input = TurnInput(
            content=row.input,
            source=InputSource(row.input_source or InputSource.USER.value),
        )
    return AgentTurn(
        id=row.id,
        timestamp=row.timestamp,
        state=AgentState(row.state),
        input=turn_input,
        thinking=row.thinking or "",
        tool_calls=[ToolCallResult.from_dict(tc) for tc in (row.tool_calls or [])],
        token_usage=TokenUsage.from_dict(row.token_usage),
        cost_cents=row.cost_cents,
    )


def _inbox_from_row(row: InboxMessageRow) -> InboxMessage:
    return InboxMessage(
        id=row.id,
        sender=row.from_address,
        content=row.content,
        received_at=row.received_at,
        reply_to=row.reply_to,
        processed_at=row.processed_at,
    )


def _heartbeat_from_row(row: HeartbeatEntryRow) -> HeartbeatEntry:
    return HeartbeatEntry(
        name=row.name,
        schedule=row.schedule,
        task=row.task,
        enabled=bool(row.enabled),
        last_run=row.last_run,
        next_run=row.next_run,
        params=dict(row.params or {}),
    )
