"""
rule_resolution.py
------------------
The one place where "which rows govern this date?" is decided.

Override precedence:
  Rows are grouped by a caller-supplied key. Within a group, if any
  specific-date row exists for the date, ONLY the specific-date rows apply;
  otherwise the weekday rows for that date's weekday apply. Specific-date
  rows replace weekday rows, they never merge with them.

Used by:
- the availability engine (AvailabilityRule, grouped by option + therapist),
  for both slot listing and the booking write path;
- the slot aggregator (Schedule rows, grouped by therapist + type).
"""

from collections import OrderedDict
from dataclasses import dataclass
from datetime import date, time
from typing import Optional, Tuple

from django.db.models import Q

from ..models import AvailabilityRule, DayOfWeek, SpecificDate
from .time_windows import add_minutes, day_of_week


def resolve_for_date(rows, on_date: date, group_key):
    """
    Apply override precedence to `rows` (objects exposing `.selector`) for
    `on_date`. Rows whose selector does not match the date are dropped.
    Weekday rows may also expose is_effective_on(date) to bound them.
    Output keeps the input order.
    """
    groups = OrderedDict()
    for row in rows:
        groups.setdefault(group_key(row), []).append(row)

    resolved = []
    for members in groups.values():
        overrides = [
            r for r in members
            if isinstance(r.selector, SpecificDate) and r.selector.matches(on_date)
        ]
        if overrides:
            resolved.extend(overrides)
            continue
        for r in members:
            if not isinstance(r.selector, DayOfWeek) or not r.selector.matches(on_date):
                continue
            effective = getattr(r, "is_effective_on", None)
            if effective is not None and not effective(on_date):
                continue
            resolved.append(r)
    return resolved


def candidate_filter(on_date: date) -> Q:
    """ORM filter for rows that could apply on `on_date` before precedence."""
    return Q(specific_date=on_date) | Q(day_of_week=day_of_week(on_date), specific_date__isnull=True)


@dataclass(frozen=True)
class RuleEntry:
    """Immutable copy of an AvailabilityRule row."""
    id: int
    service_option_id: int
    therapist_id: Optional[int]
    selector: object
    start_time: time
    end_time: time
    booking_limit: int


@dataclass(frozen=True)
class RuleSnapshot:
    """Resolved rules for one service option on one date."""
    service_option_id: int
    on_date: date
    rules: Tuple[RuleEntry, ...]

    def matching(self, start_time: time, therapist_id=None):
        """
        Rules for a slot. With a therapist: that therapist's rules only.
        Without one (pooled): every rule at that time, whatever its therapist.
        """
        start_time = start_time.replace(second=0, microsecond=0)
        return tuple(
            r for r in self.rules
            if r.start_time == start_time
            and (therapist_id is None or r.therapist_id == therapist_id)
        )

    def start_times(self, therapist_id=None):
        return sorted({
            r.start_time for r in self.rules
            if therapist_id is None or r.therapist_id == therapist_id
        })


def _rule_group(rule):
    return rule.service_option_id, rule.therapist_id


def load_rule_snapshot(service_option, on_date: date) -> RuleSnapshot:
    """
    Read every active rule for the option that could apply on `on_date`,
    apply override precedence and freeze the result.
    """
    rows = (
        AvailabilityRule.objects
        .filter(service_option=service_option, is_active=True)
        .filter(Q(therapist__isnull=True) | Q(therapist__is_active=True))
        .filter(candidate_filter(on_date))
        .order_by("start_time", "id")
    )
    duration = service_option.duration_minutes
    entries = tuple(
        RuleEntry(
            id=r.id,
            service_option_id=r.service_option_id,
            therapist_id=r.therapist_id,
            selector=r.selector,
            start_time=r.start_time.replace(second=0, microsecond=0),
            end_time=add_minutes(r.start_time, duration),
            booking_limit=r.booking_limit,
        )
        for r in resolve_for_date(list(rows), on_date, _rule_group)
    )
    return RuleSnapshot(service_option_id=service_option.id, on_date=on_date, rules=entries)
