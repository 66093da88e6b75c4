"""
Monthly credit ledger for PhotoRoute.

Tracks, per user, how many budget and premium credits each subscription
tier has used in the current calendar month (UTC).  Every check-and-
increment happens under that user's lock so concurrent requests can
never push ``used`` past ``capacity``; requests for different users
never contend.

The routing engine spends credits transactionally: :meth:`reserve`
holds one credit before dispatch, then :meth:`commit` turns the hold
into usage on success or :meth:`release` returns it on failure or
cancellation.
"""

import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from photoroute.config import CreditSettings, get_settings
from photoroute.exceptions import CreditLedgerError
from photoroute.models.edit import CostClass, Tier

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

_METERED = (CostClass.BUDGET, CostClass.PREMIUM)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def period_key(moment: datetime) -> str:
    """Return the ``YYYY-MM`` accounting period containing ``moment`` (UTC)."""
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return f"{moment.year:04d}-{moment.month:02d}"


def _counter(tier: Tier, cost_class: CostClass) -> str:
    return f"{tier.value}_{cost_class.value}"


# ── Data Models ────────────────────────────────────────


class UsageLedger(BaseModel):
    """Counters for one user in one accounting period.

    Attributes:
        period: ``YYYY-MM`` period the ``used`` counters belong to.
        used: Committed credits keyed ``<tier>_<cost_class>``.
        held: Credits reserved by in-flight requests, same keys.
    """

    period: str
    used: Dict[str, int] = Field(default_factory=dict)
    held: Dict[str, int] = Field(default_factory=dict)

    def used_for(self, tier: Tier, cost_class: CostClass) -> int:
        return self.used.get(_counter(tier, cost_class), 0)

    def held_for(self, tier: Tier, cost_class: CostClass) -> int:
        return self.held.get(_counter(tier, cost_class), 0)


class CreditReservation(BaseModel):
    """Handle for one held credit.

    Attributes:
        reservation_id: Unique handle passed back to commit/release.
        user_id: User the credit was held for.
        tier: Tier whose quota the credit counts against.
        cost_class: Metered cost class (budget or premium).
    """

    model_config = ConfigDict(frozen=True)

    reservation_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    user_id: str
    tier: Tier
    cost_class: CostClass


class TierUsage(BaseModel):
    """Usage of one tier within the current period."""

    budget_used: int = 0
    budget_held: int = 0
    budget_capacity: int = 0
    premium_used: int = 0
    premium_held: int = 0
    premium_capacity: int = 0

    @property
    def budget_remaining(self) -> int:
        return max(0, self.budget_capacity - self.budget_used - self.budget_held)

    @property
    def premium_remaining(self) -> int:
        return max(0, self.premium_capacity - self.premium_used - self.premium_held)

    @property
    def usage_percentage(self) -> float:
        """Share of the tier's combined capacity already used (0-100)."""
        capacity = self.budget_capacity + self.premium_capacity
        if capacity == 0:
            return 0.0
        return round(100.0 * (self.budget_used + self.premium_used) / capacity, 2)


class UsageStats(BaseModel):
    """Point-in-time snapshot of a user's ledger."""

    user_id: str
    period: str
    resets_at: datetime
    tiers: Dict[str, TierUsage]

    def for_tier(self, tier: Tier) -> TierUsage:
        return self.tiers[tier.value]


# ── Tracker ────────────────────────────────────────────


class UsageTracker:
    """Per-user, two-tier monthly credit ledger.

    Args:
        credits: Per-tier capacities.  Defaults to ``get_settings().credits``.
        clock: Returns the current time; injectable for period tests.
    """

    def __init__(
        self,
        credits: Optional[CreditSettings] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._credits = credits or get_settings().credits
        self._clock = clock or _utc_now
        # Guards the dicts below; always acquired after any user lock
        self._guard = threading.Lock()
        self._user_locks: Dict[str, threading.Lock] = {}
        self._ledgers: Dict[str, UsageLedger] = {}
        self._open: Dict[str, CreditReservation] = {}

    # ------------------------------------------------------------------
    # Capacity
    # ------------------------------------------------------------------

    def capacity(self, tier: Tier, cost_class: CostClass) -> int:
        """Monthly credits ``tier`` gets for ``cost_class``.

        Raises:
            CreditLedgerError: For ``free_local``, which is not metered.
        """
        if cost_class not in _METERED:
            raise CreditLedgerError(f"{cost_class.value} work is not metered")
        return int(getattr(self._credits, _counter(tier, cost_class)))

    # ------------------------------------------------------------------
    # Spending
    # ------------------------------------------------------------------

    def consume(self, user_id: str, tier: Tier, cost_class: CostClass) -> bool:
        """Atomically spend one credit if any remain.

        Returns:
            ``True`` if the credit was spent (always for ``free_local``),
            ``False`` with no mutation when the quota is exhausted.
        """
        if not cost_class.consumes_credit:
            return True
        cap = self.capacity(tier, cost_class)
        key = _counter(tier, cost_class)
        with self._user_lock(user_id):
            ledger = self._current_ledger(user_id)
            if ledger.used_for(tier, cost_class) + ledger.held_for(tier, cost_class) >= cap:
                logger.debug(
                    "Credit denied",
                    extra={"user_id": user_id, "counter": key, "capacity": cap},
                )
                return False
            ledger.used[key] = ledger.used.get(key, 0) + 1
        return True

    def reserve(
        self, user_id: str, tier: Tier, cost_class: CostClass
    ) -> Optional[CreditReservation]:
        """Hold one credit for an in-flight request.

        Returns:
            A reservation to :meth:`commit` or :meth:`release`, or ``None``
            when no credit is available.

        Raises:
            CreditLedgerError: For ``free_local``, which is not metered.
        """
        cap = self.capacity(tier, cost_class)
        key = _counter(tier, cost_class)
        with self._user_lock(user_id):
            ledger = self._current_ledger(user_id)
            if ledger.used_for(tier, cost_class) + ledger.held_for(tier, cost_class) >= cap:
                return None
            ledger.held[key] = ledger.held.get(key, 0) + 1
            reservation = CreditReservation(user_id=user_id, tier=tier, cost_class=cost_class)
            with self._guard:
                self._open[reservation.reservation_id] = reservation
        logger.debug(
            "Credit reserved",
            extra={"user_id": user_id, "counter": key, "reservation": reservation.reservation_id},
        )
        return reservation

    def commit(self, reservation: CreditReservation) -> bool:
        """Convert a held credit into usage.

        Returns:
            ``True`` if this call committed it; ``False`` if the
            reservation was already committed or released.
        """
        return self._settle(reservation, spend=True)

    def release(self, reservation: CreditReservation) -> bool:
        """Return a held credit without spending it.

        Returns:
            ``True`` if this call released it; ``False`` if the
            reservation was already committed or released.
        """
        return self._settle(reservation, spend=False)

    def _settle(self, reservation: CreditReservation, spend: bool) -> bool:
        rid = reservation.reservation_id
        while True:
            with self._guard:
                current = self._open.get(rid)
            if current is None:
                return False
            with self._user_lock(current.user_id):
                with self._guard:
                    latest = self._open.get(rid)
                    if latest is None:
                        return False
                    if latest.user_id != current.user_id:
                        # Migrated between lookups; retry under the new owner
                        continue
                    del self._open[rid]
                ledger = self._current_ledger(current.user_id)
                key = _counter(current.tier, current.cost_class)
                ledger.held[key] = max(0, ledger.held.get(key, 0) - 1)
                if spend:
                    ledger.used[key] = ledger.used.get(key, 0) + 1
            logger.debug(
                "Credit committed" if spend else "Credit released",
                extra={"user_id": current.user_id, "counter": key, "reservation": rid},
            )
            return True

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def remaining(self, user_id: str, tier: Tier, cost_class: CostClass) -> int:
        """Credits still available: ``capacity - used - held`` (never negative)."""
        cap = self.capacity(tier, cost_class)
        with self._user_lock(user_id):
            ledger = self._current_ledger(user_id)
            return max(0, cap - ledger.used_for(tier, cost_class) - ledger.held_for(tier, cost_class))

    def used(self, user_id: str, tier: Tier, cost_class: CostClass) -> int:
        with self._user_lock(user_id):
            return self._current_ledger(user_id).used_for(tier, cost_class)

    def usage_percentage(self, user_id: str, tier: Tier) -> float:
        return self.snapshot(user_id).for_tier(tier).usage_percentage

    def next_reset(self) -> datetime:
        """Start of the next accounting period (first of next month, UTC)."""
        now = self._clock().astimezone(timezone.utc)
        if now.month == 12:
            return datetime(now.year + 1, 1, 1, tzinfo=timezone.utc)
        return datetime(now.year, now.month + 1, 1, tzinfo=timezone.utc)

    def snapshot(self, user_id: str) -> UsageStats:
        """Return a copy of the user's counters for every tier."""
        with self._user_lock(user_id):
            ledger = self._current_ledger(user_id)
            tiers = {
                tier.value: TierUsage(
                    budget_used=ledger.used_for(tier, CostClass.BUDGET),
                    budget_held=ledger.held_for(tier, CostClass.BUDGET),
                    budget_capacity=self.capacity(tier, CostClass.BUDGET),
                    premium_used=ledger.used_for(tier, CostClass.PREMIUM),
                    premium_held=ledger.held_for(tier, CostClass.PREMIUM),
                    premium_capacity=self.capacity(tier, CostClass.PREMIUM),
                )
                for tier in Tier
            }
            period = ledger.period
        return UsageStats(
            user_id=user_id, period=period, resets_at=self.next_reset(), tiers=tiers
        )

    def users(self) -> List[str]:
        with self._guard:
            return sorted(self._ledgers)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def reset(self, user_id: str, tier: Tier) -> None:
        """Zero both counters of ``tier`` for ``user_id``.  Idempotent."""
        with self._user_lock(user_id):
            ledger = self._current_ledger(user_id)
            for cost_class in _METERED:
                ledger.used[_counter(tier, cost_class)] = 0
        logger.info("Usage reset", extra={"user_id": user_id, "tier": tier.value})

    def migrate(self, from_user_id: str, to_user_id: str) -> None:
        """Move a user's counters onto another key and delete the old key.

        When ``to_user_id`` already has counters for the same period the
        two are summed and each sum is clamped to its capacity; counters
        from an older period count as zero.  Open reservations follow
        the migrated user.  Holds that no longer fit under the capacity
        are revoked, the source user's first; committing a revoked
        reservation returns ``False`` and spends nothing.  Migrating onto
        itself or from an unknown user does nothing.
        """
        if from_user_id == to_user_id:
            return
        revoked = 0
        with self._both_user_locks(from_user_id, to_user_id):
            with self._guard:
                source = self._ledgers.get(from_user_id)
            if source is None:
                logger.debug("Nothing to migrate", extra={"from_user": from_user_id})
                return
            source = self._current_ledger(from_user_id)
            with self._guard:
                target_exists = to_user_id in self._ledgers
            target = self._current_ledger(to_user_id)

            for tier in Tier:
                for cost_class in _METERED:
                    key = _counter(tier, cost_class)
                    cap = self.capacity(tier, cost_class)
                    used = min(cap, target.used.get(key, 0) + source.used.get(key, 0))
                    held = target.held.get(key, 0) + source.held.get(key, 0)
                    excess = used + held - cap
                    if excess > 0:
                        dropped = self._revoke(
                            (from_user_id, to_user_id), tier, cost_class, excess
                        )
                        revoked += dropped
                        held = max(0, held - dropped)
                    target.used[key] = used
                    target.held[key] = held

            with self._guard:
                del self._ledgers[from_user_id]
                for rid, reservation in list(self._open.items()):
                    if reservation.user_id == from_user_id:
                        self._open[rid] = reservation.model_copy(update={"user_id": to_user_id})

        if revoked:
            logger.warning(
                "Reservations revoked on migrate",
                extra={"from_user": from_user_id, "to_user": to_user_id, "revoked": revoked},
            )
        logger.info(
            "Usage migrated",
            extra={"from_user": from_user_id, "to_user": to_user_id, "merged": target_exists},
        )

    def export_state(self) -> Dict[str, Dict]:
        """Serialise committed counters (holds are not persisted)."""
        with self._guard:
            return {
                user_id: {"period": ledger.period, "used": dict(ledger.used)}
                for user_id, ledger in self._ledgers.items()
            }

    def import_state(self, state: Dict[str, Dict]) -> None:
        """Load counters produced by :meth:`export_state`.

        Raises:
            CreditLedgerError: If an entry is malformed.
        """
        loaded: Dict[str, UsageLedger] = {}
        for user_id, entry in state.items():
            try:
                loaded[user_id] = UsageLedger(period=entry["period"], used=entry.get("used", {}))
            except (KeyError, TypeError, ValueError) as exc:
                raise CreditLedgerError(f"Invalid ledger entry for '{user_id}': {exc}") from exc
        with self._guard:
            self._ledgers.update(loaded)
        logger.info("Usage state loaded", extra={"users": len(loaded)})

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _revoke(
        self, owners: Tuple[str, ...], tier: Tier, cost_class: CostClass, count: int
    ) -> int:
        """Close up to ``count`` open reservations, taking owners in order."""
        dropped = 0
        with self._guard:
            for owner in owners:
                for rid, reservation in list(self._open.items()):
                    if dropped == count:
                        return dropped
                    if (
                        reservation.user_id == owner
                        and reservation.tier == tier
                        and reservation.cost_class == cost_class
                    ):
                        del self._open[rid]
                        dropped += 1
        return dropped

    def _user_lock(self, user_id: str) -> threading.Lock:
        with self._guard:
            lock = self._user_locks.get(user_id)
            if lock is None:
                lock = threading.Lock()
                self._user_locks[user_id] = lock
            return lock

    def _both_user_locks(self, first: str, second: str) -> "_OrderedLocks":
        ordered = sorted([first, second])
        return _OrderedLocks([self._user_lock(u) for u in ordered])

    def _current_ledger(self, user_id: str) -> UsageLedger:
        """Return the user's ledger, rolling it into the current period.

        Caller must hold the user's lock.
        """
        current = period_key(self._clock())
        with self._guard:
            ledger = self._ledgers.get(user_id)
            if ledger is None:
                ledger = UsageLedger(period=current)
                self._ledgers[user_id] = ledger
                return ledger
        if ledger.period != current:
            logger.info(
                "Usage period rolled over",
                extra={"user_id": user_id, "from_period": ledger.period, "to_period": current},
            )
            ledger.period = current
            ledger.used = {}
        return ledger


class _OrderedLocks:
    """Context manager acquiring several locks in the given order."""

    def __init__(self, locks: List[threading.Lock]) -> None:
        self._locks = locks

    def __enter__(self) -> "_OrderedLocks":
        for lock in self._locks:
            lock.acquire()
        return self

    def __exit__(self, *exc_info) -> None:
        for lock in reversed(self._locks):
            lock.release()
