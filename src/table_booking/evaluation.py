"""Admission engine: decide whether a booking request is confirmed, held, waitlisted or rejected.

The decision is an ordered list of rules. Each rule either returns an
``Evaluation`` (first match wins) or ``None`` to pass to the next rule.
Rules only read the context; nothing here writes to the database.
"""
import logging
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional, Sequence

from .capacity import SlotCapacity, window_capacity
from .clock import Clock, hours_between, to_minutes
from .models import EvaluationRequest, Reservation
from .settings_service import DayRules, SettingsService, SettingsSnapshot
from .stores import ReservationStore

logger = logging.getLogger(__name__)


class Decision(str, Enum):
    AUTO_CONFIRM = "auto_confirm"
    PENDING = "pending"
    WAITLIST = "waitlist"
    REJECT = "reject"


@dataclass(frozen=True)
class EvaluationMetadata:
    """Diagnostics for callers; never used for control flow."""
    current_capacity_percent: float
    reservations_in_slot: int
    total_guests: int
    hours_in_advance: float
    is_within_operating_hours: bool


@dataclass(frozen=True)
class Evaluation:
    decision: Decision
    reason: str
    metadata: EvaluationMetadata
    rule: str = ""

    def to_dict(self) -> dict:
        return {
            "decision": self.decision.value,
            "reason": self.reason,
            "metadata": asdict(self.metadata),
        }


@dataclass
class EvaluationContext:
    """Inputs for one evaluation. Capacity is computed lazily and at most once."""
    request: EvaluationRequest
    snapshot: SettingsSnapshot
    reservations: Sequence[Reservation]
    now: datetime
    hours_in_advance: float = field(init=False, default=0.0)
    is_within_operating_hours: bool = field(init=False, default=True)
    _capacity: Optional[SlotCapacity] = field(init=False, default=None, repr=False)

    def __post_init__(self):
        self.hours_in_advance = hours_between(self.now, self.request.date, self.request.time)

    @property
    def rules(self) -> DayRules:
        return self.snapshot.rules_for(self.request.date)

    def capacity(self) -> SlotCapacity:
        if self._capacity is None:
            self._capacity = window_capacity(
                self.reservations,
                self.request.time,
                self.snapshot.settings.turnover_minutes,
                self.snapshot.total_capacity,
            )
        return self._capacity

    def decide(self, decision: Decision, reason: str, with_capacity: bool = True) -> Evaluation:
        capacity = self.capacity() if with_capacity else SlotCapacity.empty()
        return Evaluation(
            decision=decision,
            reason=reason,
            metadata=EvaluationMetadata(
                current_capacity_percent=round(capacity.utilization * 100, 2),
                reservations_in_slot=capacity.reservation_count,
                total_guests=capacity.total_guests,
                hours_in_advance=round(self.hours_in_advance, 2),
                is_within_operating_hours=self.is_within_operating_hours,
            ),
        )


RuleCheck = Callable[[EvaluationContext], Optional[Evaluation]]


@dataclass(frozen=True)
class Rule:
    name: str
    check: RuleCheck


# ============================================================================
# RULES (in evaluation order)
# ============================================================================

def check_operating_hours(ctx: EvaluationContext) -> Optional[Evaluation]:
    hours = ctx.snapshot.hours_for(ctx.request.date)
    if hours.is_closed:
        ctx.is_within_operating_hours = False
        label = f" ({hours.special_date})" if hours.special_date else ""
        return ctx.decide(Decision.REJECT, f"Restaurant is closed on {ctx.request.date.isoformat()}{label}", with_capacity=False)

    requested = to_minutes(ctx.request.time)
    if not to_minutes(hours.open_time) <= requested < to_minutes(hours.close_time):
        ctx.is_within_operating_hours = False
        return ctx.decide(
            Decision.REJECT,
            f"Outside operating hours ({hours.open_time}-{hours.close_time})",
            with_capacity=False,
        )
    return None


def check_min_notice(ctx: EvaluationContext) -> Optional[Evaluation]:
    minimum = ctx.snapshot.settings.min_hours_in_advance
    if ctx.hours_in_advance < minimum:
        return ctx.decide(Decision.REJECT, f"Must book at least {minimum} hours in advance", with_capacity=False)
    return None


def check_max_advance(ctx: EvaluationContext) -> Optional[Evaluation]:
    max_days = ctx.snapshot.settings.max_days_in_advance
    if ctx.hours_in_advance > max_days * 24:
        return ctx.decide(Decision.REJECT, f"Cannot book more than {max_days} days ahead", with_capacity=False)
    return None


def check_same_day(ctx: EvaluationContext) -> Optional[Evaluation]:
    if ctx.hours_in_advance < 24 and not ctx.snapshot.settings.allow_same_day_booking:
        return ctx.decide(Decision.REJECT, "Same-day booking not allowed", with_capacity=False)
    return None


def check_large_party(ctx: EvaluationContext) -> Optional[Evaluation]:
    s = ctx.snapshot.settings
    size = ctx.request.party_size
    if s.large_party_needs_approval and size >= s.large_party_min_size:
        return ctx.decide(Decision.PENDING, f"Large party ({size} guests) requires manager approval")
    return None


def check_deposit(ctx: EvaluationContext) -> Optional[Evaluation]:
    size = ctx.request.party_size
    if size >= ctx.rules.require_deposit_min_party_size:
        return ctx.decide(Decision.PENDING, f"Party of {size} requires deposit confirmation")
    return None


def check_auto_accept_limit(ctx: EvaluationContext) -> Optional[Evaluation]:
    size = ctx.request.party_size
    limit = ctx.rules.auto_accept_max_party_size
    if size > limit:
        return ctx.decide(Decision.PENDING, f"Party size ({size}) exceeds auto-accept limit ({limit})")
    return None


def check_slot_limit(ctx: EvaluationContext) -> Optional[Evaluation]:
    count = ctx.capacity().reservation_count
    if count >= ctx.snapshot.settings.max_reservations_per_slot:
        return ctx.decide(Decision.WAITLIST, f"Time slot is full ({count} reservations)")
    return None


def check_waitlist_threshold(ctx: EvaluationContext) -> Optional[Evaluation]:
    # Thresholds compare the current utilization, before adding this party
    utilization = ctx.capacity().utilization
    if utilization >= ctx.rules.auto_waitlist_threshold:
        return ctx.decide(Decision.WAITLIST, f"Capacity at {round(utilization * 100)}% - adding to waitlist")
    return None


def check_pending_threshold(ctx: EvaluationContext) -> Optional[Evaluation]:
    utilization = ctx.capacity().utilization
    if utilization >= ctx.rules.auto_pending_threshold:
        return ctx.decide(Decision.PENDING, f"Capacity at {round(utilization * 100)}% - requires review")
    return None


def check_total_capacity(ctx: EvaluationContext) -> Optional[Evaluation]:
    prospective = ctx.capacity().total_guests + ctx.request.party_size
    total = ctx.snapshot.total_capacity
    if prospective > total:
        return ctx.decide(Decision.WAITLIST, f"Would exceed capacity ({prospective}/{total} guests)")
    return None


DEFAULT_RULES: List[Rule] = [
    Rule("operating_hours", check_operating_hours),
    Rule("min_notice", check_min_notice),
    Rule("max_advance", check_max_advance),
    Rule("same_day", check_same_day),
    Rule("large_party", check_large_party),
    Rule("deposit", check_deposit),
    Rule("auto_accept_limit", check_auto_accept_limit),
    Rule("slot_limit", check_slot_limit),
    Rule("waitlist_threshold", check_waitlist_threshold),
    Rule("pending_threshold", check_pending_threshold),
    Rule("total_capacity", check_total_capacity),
]


def evaluate(
    request: EvaluationRequest,
    snapshot: SettingsSnapshot,
    reservations: Sequence[Reservation],
    now: datetime,
    rules: Sequence[Rule] = DEFAULT_RULES,
) -> Evaluation:
    """
    Run the rule cascade over a snapshot.

    Args:
        request: Requested date, time, party size and source
        snapshot: Restaurant settings read for this operation
        reservations: Reservations on the requested date (non-confirmed are ignored)
        now: Current restaurant-local wall-clock time
        rules: Ordered rules; the first one returning a result decides

    Returns:
        Evaluation with decision, reason and diagnostics
    """
    ctx = EvaluationContext(request=request, snapshot=snapshot, reservations=reservations, now=now)
    for rule in rules:
        result = rule.check(ctx)
        if result is not None:
            return replace(result, rule=rule.name)
    return replace(ctx.decide(Decision.AUTO_CONFIRM, "All requirements met"), rule="all_passed")


class EvaluationService:
    """Loads the inputs for ``evaluate`` and runs it."""

    def __init__(
        self,
        settings_service: SettingsService,
        reservations: ReservationStore,
        clock: Clock,
    ):
        self.settings_service = settings_service
        self.reservations = reservations
        self.clock = clock

    async def evaluate(
        self,
        request: EvaluationRequest,
        snapshot: Optional[SettingsSnapshot] = None,
    ) -> Evaluation:
        snapshot = snapshot or await self.settings_service.get()
        confirmed = await self.reservations.find_confirmed_by_date(request.date)
        result = evaluate(request, snapshot, confirmed, self.clock())
        logger.info(
            f"Evaluated {request.date} {request.time} party of {request.party_size}: "
            f"{result.decision.value} ({result.rule}: {result.reason})"
        )
        return result
