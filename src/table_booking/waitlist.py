"""Waitlist promotion policy.

Promotion targets a freed exact slot, so it checks the guests confirmed
for that exact time rather than the turnover window used at admission.
"""
from dataclasses import dataclass
from typing import Iterable, Optional

from .models import Reservation, WaitlistEntry


@dataclass
class PromotionResult:
    promoted: bool
    reservation: Optional[Reservation] = None
    waitlist_entry: Optional[WaitlistEntry] = None


def plan_promotion(
    entries: Iterable[WaitlistEntry],
    current_covers: int,
    max_covers: int,
) -> Optional[WaitlistEntry]:
    """
    Pick the entry to promote: the first one, in the given (FIFO) order, that fits.

    Entries that don't fit are skipped, never reordered: a later small party
    is only chosen when every earlier party is too large.
    """
    remaining = max_covers - current_covers
    for entry in entries:
        if entry.party_size <= remaining:
            return entry
    return None
