"""
SURVIVAL
========

Credit-based survival policy.

Two pieces:

- ``derive_tier(credits_cents)`` — a pure function mapping a credit
  balance to a ``SurvivalTier`` against three ascending thresholds.
- ``FinancialGate`` — polls the credit balance and the on-chain token
  balance, each isolated from the other's failures, and falls back to the
  last strictly positive value seen for a source when that source fails.

Why the fallback matters: a zero balance sends the agent into the terminal
``dead`` state, so a flaky network read must never be reported as zero.
The last-known values live in an explicit ``BalanceCache`` object that the
gate owns (inject your own in tests).

Usage::

    gate = FinancialGate(credits_source=api.get_credits_cents,
                         usdc_source=wallet.get_usdc_balance)
    state = gate.poll()
    tier = gate.tier(state)
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional

from .state.records import Transaction, new_ulid, utc_now_iso
from .state.store import StateStore

logger = logging.getLogger(__name__)


# ============================================================================
# TIERS
# ============================================================================

class SurvivalTier(str, Enum):
    NORMAL = "normal"
    LOW_COMPUTE = "low_compute"
    CRITICAL = "critical"
    DEAD = "dead"


# Worst first; index is the tier's quality.
TIER_ORDER = (SurvivalTier.DEAD, SurvivalTier.CRITICAL, SurvivalTier.LOW_COMPUTE, SurvivalTier.NORMAL)


@dataclass(frozen=True)
class SurvivalThresholds:
    """Credit thresholds in cents. Must satisfy dead < critical < normal."""
    normal: int = 500
    critical: int = 100
    dead: int = 0

    def __post_init__(self):
        if not (self.dead < self.critical < self.normal):
            raise ValueError(
                f"thresholds must ascend dead < critical < normal, "
                f"got dead={self.dead} critical={self.critical} normal={self.normal}"
            )

    def to_dict(self) -> Dict:
        return {"normal": self.normal, "critical": self.critical, "dead": self.dead}

    @classmethod
    def from_dict(cls, data: Dict) -> "SurvivalThresholds":
        return cls(
            normal=int(data.get("normal", 500)),
            critical=int(data.get("critical", 100)),
            dead=int(data.get("dead", 0)),
        )


DEFAULT_THRESHOLDS = SurvivalThresholds()


def derive_tier(credits_cents: int, thresholds: SurvivalThresholds = DEFAULT_THRESHOLDS) -> SurvivalTier:
    """Map a credit balance to its survival tier."""
    if credits_cents > thresholds.normal:
        return SurvivalTier.NORMAL
    if credits_cents > thresholds.critical:
        return SurvivalTier.LOW_COMPUTE
    if credits_cents > thresholds.dead:
        return SurvivalTier.CRITICAL
    return SurvivalTier.DEAD


def tier_rank(tier: SurvivalTier) -> int:
    """0 for dead up to 3 for normal."""
    return TIER_ORDER.index(tier)


def format_credits(cents: int) -> str:
    return f"${cents / 100:.2f}"


# ============================================================================
# FINANCIAL STATE
# ============================================================================

@dataclass
class FinancialState:
    """Point-in-time balances. Recomputed on every poll, never persisted."""
    credits_cents: int
    usdc_balance: float
    last_checked: str

    def to_dict(self) -> Dict:
        return {
            "credits_cents": self.credits_cents,
            "usdc_balance": self.usdc_balance,
            "last_checked": self.last_checked,
        }


@dataclass
class BalanceCache:
    """Last strictly positive value observed per balance source."""
    last_credits_cents: int = 0
    last_usdc_balance: float = 0.0

    def remember_credits(self, value: int) -> None:
        if value > 0:
            self.last_credits_cents = value

    def remember_usdc(self, value: float) -> None:
        if value > 0:
            self.last_usdc_balance = value


class FinancialGate:
    """Polls balance sources with per-source failure isolation."""

    def __init__(
        self,
        credits_source: Optional[Callable[[], int]] = None,
        usdc_source: Optional[Callable[[], float]] = None,
        cache: Optional[BalanceCache] = None,
        thresholds: Optional[SurvivalThresholds] = None,
    ):
        """
        Args:
            credits_source: Returns the compute credit balance in cents.
            usdc_source: Returns the on-chain USDC balance.
            cache: Last-known-good values; a fresh zeroed cache if None.
            thresholds: Tier thresholds (defaults: 500 / 100 / 0 cents).
        """
        self.credits_source = credits_source
        self.usdc_source = usdc_source
        self.cache = cache or BalanceCache()
        self.thresholds = thresholds or DEFAULT_THRESHOLDS

    @property
    def has_credit_source(self) -> bool:
        """False when nothing reports credits, so a poll only echoes the cache."""
        return self.credits_source is not None

    def poll(self) -> FinancialState:
        """Query both sources. A failed source reports its cached value."""
        credits_cents = self.cache.last_credits_cents
        usdc_balance = self.cache.last_usdc_balance

        if self.credits_source is not None:
            try:
                credits_cents = max(0, int(self.credits_source()))
                self.cache.remember_credits(credits_cents)
            except Exception as e:
                logger.warning(
                    "Credit balance query failed, using last known %s: %s",
                    format_credits(credits_cents), e,
                )

        if self.usdc_source is not None:
            try:
                usdc_balance = max(0.0, float(self.usdc_source()))
                self.cache.remember_usdc(usdc_balance)
            except Exception as e:
                logger.warning(
                    "USDC balance query failed, using last known %.4f: %s",
                    usdc_balance, e,
                )

        return FinancialState(
            credits_cents=credits_cents,
            usdc_balance=usdc_balance,
            last_checked=utc_now_iso(),
        )

    def tier(self, state: FinancialState) -> SurvivalTier:
        return derive_tier(state.credits_cents, self.thresholds)


def log_credit_check(store: StateStore, state: FinancialState) -> None:
    """Record a balance check in the transaction log."""
    store.insert_transaction(Transaction(
        id=new_ulid(),
        type="credit_check",
        amount_cents=state.credits_cents,
        description=(
            f"Balance check: {format_credits(state.credits_cents)} credits, "
            f"{state.usdc_balance:.4f} USDC"
        ),
        timestamp=state.last_checked,
    ))

