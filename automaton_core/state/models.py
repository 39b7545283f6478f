"""
STATE_MODELS
============

SQLAlchemy table definitions for the automaton's durable state.

This file contains ONLY ORM models. Engine setup, sessions and all
read/write logic live in ``store.py``; records handed to the rest of the
package are the dataclasses in ``records.py``.

Timestamps are stored as fixed-width ISO-8601 UTC strings (see
``records.to_iso``) so that ``ORDER BY timestamp`` is chronological.
"""

from typing import Any, Dict, List, Optional

from sqlalchemy import Boolean, ForeignKey, Index, Integer, JSON, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Shared declarative base for all automaton tables."""
    pass


# ============================================================================
# TURNS
# ============================================================================

class TurnRow(Base):
    __tablename__ = "turns"

    id: Mapped[str] = mapped_column(String(26), primary_key=True)
    timestamp: Mapped[str] = mapped_column(String(40), nullable=False, index=True)
    state: Mapped[str] = mapped_column(String(20), nullable=False)
    input: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    input_source: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    thinking: Mapped[str] = mapped_column(Text, nullable=False, default="")
    tool_calls: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    token_usage: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    cost_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class ToolCallRow(Base):
    __tablename__ = "tool_calls"

    # Inference call ids are only unique within a turn (local models number
    # them call_0, call_1, ...), so rows get their own surrogate key.
    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[str] = mapped_column(String(128), nullable=False)
    turn_id: Mapped[str] = mapped_column(ForeignKey("turns.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    arguments: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    result: Mapped[str] = mapped_column(Text, nullable=False, default="")
    duration_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[str] = mapped_column(String(40), nullable=False)


# ============================================================================
# KEY-VALUE
# ============================================================================

class KVRow(Base):
    __tablename__ = "kv"

    key: Mapped[str] = mapped_column(String(128), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[str] = mapped_column(String(40), nullable=False)


class IdentityRow(Base):
    __tablename__ = "identity"

    key: Mapped[str] = mapped_column(String(128), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)


# ============================================================================
# INBOX
# ============================================================================

class InboxMessageRow(Base):
    __tablename__ = "inbox_messages"
    __table_args__ = (
        Index("ix_inbox_unprocessed", "processed_at", "received_at"),
    )

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    from_address: Mapped[str] = mapped_column(String(256), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    received_at: Mapped[str] = mapped_column(String(40), nullable=False)
    reply_to: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    processed_at: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)


# ============================================================================
# HEARTBEAT
# ============================================================================

class HeartbeatEntryRow(Base):
    __tablename__ = "heartbeat_entries"

    name: Mapped[str] = mapped_column(String(128), primary_key=True)
    schedule: Mapped[str] = mapped_column(String(128), nullable=False)
    task: Mapped[str] = mapped_column(String(128), nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    last_run: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    next_run: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    params: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    updated_at: Mapped[str] = mapped_column(String(40), nullable=False)


# ============================================================================
# TRANSACTIONS
# ============================================================================

class TransactionRow(Base):
    __tablename__ = "transactions"

    id: Mapped[str] = mapped_column(String(26), primary_key=True)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    amount_cents: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    balance_after_cents: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[str] = mapped_column(String(40), nullable=False, index=True)
