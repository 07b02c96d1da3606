# marketplace/services/recurring/recurrence.py
"""
Pure recurrence-rule expansion.

Weeks start on Sunday (day 0). ``interval`` counts periods: days for daily,
weeks for weekly, fortnights for biweekly and months for monthly. Monthly
dates past the end of a short month are clamped to its last day. A fixed
``occurrences`` count is always counted from the series start, so resuming
from a later date never extends the series.
"""
import calendar
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterator, List, Optional, Tuple

from marketplace.core.exceptions import ValidationError
from marketplace.models.recurring_booking import RecurrenceFrequency
from marketplace.utils.time_utils import day_of_week


@dataclass(frozen=True)
class RecurrenceRule:
    frequency: RecurrenceFrequency
    interval: int
    start_date: date
    end_date: Optional[date] = None
    occurrences: Optional[int] = None
    days_of_week: Tuple[int, ...] = ()
    day_of_month: Optional[int] = None

    @classmethod
    def from_series(cls, series) -> "RecurrenceRule":
        return cls(
            frequency=RecurrenceFrequency(series.frequency),
            interval=series.interval or 1,
            start_date=series.start_date,
            end_date=series.end_date,
            occurrences=series.occurrences,
            days_of_week=tuple(series.days_of_week or ()),
            day_of_month=series.day_of_month,
        )

    @property
    def is_open_ended(self) -> bool:
        return self.end_date is None and self.occurrences is None


def validate_rule(rule: RecurrenceRule, max_occurrences: int = 52, max_span_days: int = 366) -> None:
    if rule.interval < 1:
        raise ValidationError("interval must be at least 1")
    if rule.end_date is not None and rule.occurrences is not None:
        raise ValidationError("Provide either end_date or occurrences, not both")
    if rule.occurrences is not None and not 1 <= rule.occurrences <= max_occurrences:
        raise ValidationError(f"occurrences must be between 1 and {max_occurrences}")
    if rule.end_date is not None:
        if rule.end_date < rule.start_date:
            raise ValidationError("end_date must not be before start_date")
        if (rule.end_date - rule.start_date).days > max_span_days:
            raise ValidationError(f"A series cannot span more than {max_span_days} days")
    if any(not 0 <= d <= 6 for d in rule.days_of_week):
        raise ValidationError("days_of_week values must be between 0 (Sunday) and 6 (Saturday)")
    if rule.day_of_month is not None and not 1 <= rule.day_of_month <= 31:
        raise ValidationError("day_of_month must be between 1 and 31")


def _add_months(year: int, month: int, months: int) -> Tuple[int, int]:
    index = year * 12 + (month - 1) + months
    return index // 12, index % 12 + 1


def iter_candidate_dates(rule: RecurrenceRule) -> Iterator[date]:
    """Unbounded, ascending stream of rule dates starting at ``start_date``"""
    start = rule.start_date

    if rule.frequency == RecurrenceFrequency.DAILY:
        current = start
        while True:
            yield current
            current += timedelta(days=rule.interval)

    elif rule.frequency in (RecurrenceFrequency.WEEKLY, RecurrenceFrequency.BIWEEKLY):
        weeks = rule.interval * (2 if rule.frequency == RecurrenceFrequency.BIWEEKLY else 1)
        days = sorted(set(rule.days_of_week)) or [day_of_week(start)]
        week_start = start - timedelta(days=day_of_week(start))
        while True:
            for dow in days:
                candidate = week_start + timedelta(days=dow)
                if candidate >= start:
                    yield candidate
            week_start += timedelta(weeks=weeks)

    elif rule.frequency == RecurrenceFrequency.MONTHLY:
        target_day = rule.day_of_month or start.day
        step = 0
        while True:
            year, month = _add_months(start.year, start.month, step * rule.interval)
            candidate = date(year, month, min(target_day, calendar.monthrange(year, month)[1]))
            if candidate >= start:
                yield candidate
            step += 1

    else:
        raise ValidationError(f"Unsupported frequency: {rule.frequency}")


def occurrence_dates(
        rule: RecurrenceRule,
        until: Optional[date] = None,
        from_date: Optional[date] = None
) -> List[date]:
    """
    Rule dates in order, bounded by the rule's end and by ``until``.

    Dates before ``from_date`` still count toward ``occurrences`` but are not
    returned. Open-ended rules require ``until``.
    """
    if rule.is_open_ended and until is None:
        raise ValidationError("Open-ended series can only be expanded up to a horizon")

    dates = []
    for index, candidate in enumerate(iter_candidate_dates(rule)):
        if rule.occurrences is not None and index >= rule.occurrences:
            break
        if rule.end_date is not None and candidate > rule.end_date:
            break
        if until is not None and candidate > until:
            break
        if from_date is None or candidate >= from_date:
            dates.append(candidate)
    return dates
