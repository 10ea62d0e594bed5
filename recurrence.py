import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, timedelta
from fractions import Fraction
from typing import Iterable, Iterator, Optional

from ledger import (
    Clock,
    IdentityKey,
    LedgerStore,
    RecurringTemplate,
    Transaction,
    identity_key,
    local_today,
    templates,
)
from models import Frequency


logger = logging.getLogger(__name__)

# Monthly-equivalent multiplier per frequency. Unknown values map to zero.
MONTHLY_MULTIPLIERS: dict[Frequency, Fraction] = {
    Frequency.one_time: Fraction(0),
    Frequency.weekly: Fraction(52, 12),
    Frequency.biweekly: Fraction(26, 12),
    Frequency.monthly: Fraction(1),
    Frequency.yearly: Fraction(1, 12),
}


def monthly_multiplier(frequency: object) -> Fraction:
    parsed = Frequency.parse(frequency)
    if parsed is None:
        return Fraction(0)
    return MONTHLY_MULTIPLIERS[parsed]


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        return 31
    return (date(year, month + 1, 1) - date(year, month, 1)).days


def add_months(base: date, months: int) -> date:
    """Shift ``base`` by whole months, clamping to the target month's last day."""
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    return date(year, month, min(base.day, days_in_month(year, month)))


def nth_occurrence(anchor: date, frequency: Frequency, n: int) -> date:
    if frequency == Frequency.weekly:
        return anchor + timedelta(weeks=n)
    if frequency == Frequency.biweekly:
        return anchor + timedelta(weeks=2 * n)
    if frequency == Frequency.monthly:
        return add_months(anchor, n)
    if frequency == Frequency.yearly:
        return add_months(anchor, 12 * n)
    raise ValueError(f"{frequency.value} has no occurrences")


@dataclass(frozen=True)
class OccurrenceSchedule:
    """Dates on which a template materialises, from its anchor up to the horizon.

    Every occurrence is derived from the anchor rather than from the previous
    occurrence, so a clamped month end (Jan 31 -> Feb 28) does not drag the
    rest of the series to the 28th. Iterating again restarts the sequence.
    """

    anchor: date
    frequency: Optional[Frequency]
    horizon: date

    def __iter__(self) -> Iterator[date]:
        if self.frequency is None or self.frequency == Frequency.one_time:
            return
        n = 0
        while True:
            try:
                candidate = nth_occurrence(self.anchor, self.frequency, n)
            except (ValueError, OverflowError):
                logger.warning(
                    "occurrence_skipped: anchor=%s frequency=%s n=%d",
                    self.anchor.isoformat(),
                    self.frequency.value,
                    n,
                )
                return
            if candidate > self.horizon:
                return
            yield candidate
            n += 1


def occurrence_dates(
    anchor: date, frequency: object, horizon: date
) -> OccurrenceSchedule:
    return OccurrenceSchedule(anchor, Frequency.parse(frequency), horizon)


def _series_anchors(
    members: Iterable[RecurringTemplate], horizon: date
) -> list[RecurringTemplate]:
    """Members of one series that seed a schedule of their own.

    A member dated on a day an earlier anchor already produces is an
    occurrence of that anchor, not a new one.
    """
    anchors: list[RecurringTemplate] = []
    covered: set[date] = set()
    for member in sorted(members, key=lambda t: t.anchor_date):
        if member.anchor_date in covered:
            continue
        anchors.append(member)
        covered.update(
            OccurrenceSchedule(member.anchor_date, member.frequency, horizon)
        )
    return anchors


def _group_series(
    ledger: Iterable[Transaction],
) -> dict[tuple, list[RecurringTemplate]]:
    series: dict[tuple, list[RecurringTemplate]] = defaultdict(list)
    for template in templates(ledger):
        series[template.series_key()].append(template)
    return series


def series_heads(ledger: Iterable[Transaction]) -> list[Transaction]:
    """One entry per recurring series: the anchors, without their occurrences."""
    heads: list[Transaction] = []
    for members in _group_series(ledger).values():
        horizon = max(m.anchor_date for m in members)
        heads.extend(a.entry for a in _series_anchors(members, horizon))
    return sorted(heads, key=lambda t: (t.date, t.description))


def reconcile(ledger: Iterable[Transaction], today: date) -> list[Transaction]:
    """Return the occurrences missing from ``ledger`` up to and including ``today``.

    The ledger itself is never touched. An occurrence counts as present when
    some entry shares its (description, category, amount, date), whether that
    entry was generated or typed in by hand.
    """
    entries = list(ledger)
    known: set[IdentityKey] = {identity_key(txn) for txn in entries}

    created: list[Transaction] = []
    for members in _group_series(entries).values():
        for anchor in _series_anchors(members, today):
            for occurrence_date in OccurrenceSchedule(
                anchor.anchor_date, anchor.frequency, today
            ):
                occurrence = anchor.entry.with_date(occurrence_date)
                key = identity_key(occurrence)
                if key in known:
                    continue
                known.add(key)
                created.append(occurrence)
    return created


class RecurringEngine:
    def __init__(self, store: LedgerStore, clock: Clock = local_today) -> None:
        self.store = store
        self.clock = clock

    def pending(self, today: Optional[date] = None) -> list[Transaction]:
        today = today or self.clock()
        return reconcile(self.store.read(), today)

    def run(self, today: Optional[date] = None) -> int:
        today = today or self.clock()
        created = self.pending(today)
        if created:
            self.store.append(created)
        logger.info(
            "reconcile: today=%s created=%d", today.isoformat(), len(created)
        )
        return len(created)
