# ============================================================================
# marketplace/services/recurring/recurring_booking_service.py
# Recurring series: creation, rolling horizon, pause / resume / cancel
# ============================================================================
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from marketplace.config.settings import Settings, get_settings
from marketplace.core.exceptions import (
    AuthorizationError, BookingEngineError, ConflictError, NotFoundError, PolicyViolationError, ValidationError
)
from marketplace.models.booking import Booking, BookingStatus
from marketplace.models.booking_policy import PolicyType
from marketplace.models.recurring_booking import RecurrenceFrequency, RecurringBookingSeries, SeriesStatus
from marketplace.models.service import Service
from marketplace.services.booking.booking_service import BookingService
from marketplace.services.booking.effects import EffectBatch, EffectDispatcher
from marketplace.services.recurring.recurrence import RecurrenceRule, occurrence_dates, validate_rule
from marketplace.utils.time_utils import combine_utc, day_of_week, ensure_utc, utcnow

logger = logging.getLogger(__name__)

_CANCELLABLE = (BookingStatus.PENDING.value, BookingStatus.ACCEPTED.value)


@dataclass
class SeriesResult:
    series: RecurringBookingSeries
    occurrences: List[Booking] = field(default_factory=list)
    skipped: List[Dict[str, Any]] = field(default_factory=list)
    cancelled: int = 0


class RecurringBookingService:
    """RecurringBookingExpander: every occurrence goes through the normal booking pipeline"""

    def __init__(self, db: Session, dispatcher: Optional[EffectDispatcher] = None,
                 settings: Optional[Settings] = None):
        self.db = db
        self.dispatcher = dispatcher
        self.settings = settings or get_settings()
        self.bookings = BookingService(db, dispatcher, self.settings)

    def _get_series(self, series_id: UUID, for_update: bool = False) -> RecurringBookingSeries:
        query = self.db.query(RecurringBookingSeries).filter(RecurringBookingSeries.id == series_id)
        if for_update:
            query = query.with_for_update()
        series = query.first()
        if not series:
            raise NotFoundError("Recurring series not found", {"series_id": str(series_id)})
        return series

    def _horizon(self, now: datetime) -> date:
        return now.date() + timedelta(days=self.settings.RECURRING_HORIZON_DAYS)

    # ------------------------------------------------------------------
    # Creation and materialization
    # ------------------------------------------------------------------

    def create_series(
            self,
            customer_id: UUID,
            service_id: UUID,
            frequency: str,
            start_date: date,
            time_slot: time,
            interval: int = 1,
            end_date: Optional[date] = None,
            occurrences: Optional[int] = None,
            days_of_week: Optional[List[int]] = None,
            day_of_month: Optional[int] = None,
            duration_minutes: Optional[int] = None,
            notes: Optional[str] = None,
            now: Optional[datetime] = None
    ) -> SeriesResult:
        now = ensure_utc(now) or utcnow()

        service = self.db.query(Service).filter(Service.id == service_id).first()
        if not service:
            raise NotFoundError("Service not found", {"service_id": str(service_id)})
        if not service.allow_recurring:
            raise PolicyViolationError("This service does not accept recurring bookings")
        if service.provider_id == customer_id:
            raise PolicyViolationError("You cannot book your own service")

        try:
            frequency = RecurrenceFrequency(frequency)
        except ValueError:
            raise ValidationError(f"Unsupported frequency: {frequency}")

        rule = RecurrenceRule(
            frequency=frequency,
            interval=interval,
            start_date=start_date,
            end_date=end_date,
            occurrences=occurrences,
            days_of_week=tuple(days_of_week or ()),
            day_of_month=day_of_month,
        )
        validate_rule(rule, self.settings.RECURRING_MAX_OCCURRENCES, self.settings.RECURRING_MAX_SPAN_DAYS)

        if frequency in (RecurrenceFrequency.WEEKLY, RecurrenceFrequency.BIWEEKLY) and not days_of_week:
            days_of_week = [day_of_week(start_date)]
        if frequency == RecurrenceFrequency.MONTHLY and not day_of_month:
            day_of_month = start_date.day

        series = RecurringBookingSeries(
            service_id=service.id,
            customer_id=customer_id,
            provider_id=service.provider_id,
            frequency=frequency.value,
            interval=interval,
            start_date=start_date,
            end_date=end_date,
            occurrences=occurrences,
            days_of_week=sorted(set(days_of_week or [])),
            day_of_month=day_of_month,
            time_slot=time_slot,
            duration_minutes=duration_minutes or service.duration_minutes,
            notes=notes,
            status=SeriesStatus.ACTIVE.value,
        )
        self.db.add(series)
        self.db.commit()
        self.db.refresh(series)

        result = self._materialize(series, from_date=start_date, now=now)
        logger.info(
            f"Series {series.id} created: {len(result.occurrences)} occurrences, {len(result.skipped)} skipped"
        )
        return result

    def _materialize(self, series: RecurringBookingSeries, from_date: date, now: datetime) -> SeriesResult:
        """Book every rule date from ``from_date`` up to the series end (or horizon)"""
        rule = RecurrenceRule.from_series(series)
        until = self._horizon(now) if rule.is_open_ended else None
        result = SeriesResult(series=series)

        existing = {
            row.booking_date
            for row in self.db.query(Booking.booking_date).filter(
                Booking.recurring_series_id == series.id,
                Booking.status != BookingStatus.CANCELLED.value
            ).all()
        }

        dates = occurrence_dates(rule, until=until, from_date=from_date)
        for occurrence_date in dates:
            if occurrence_date in existing:
                continue
            if combine_utc(occurrence_date, series.time_slot) <= now:
                result.skipped.append({"date": occurrence_date, "reason": "in_past"})
                continue
            try:
                booking = self.bookings.create_booking(
                    customer_id=series.customer_id,
                    service_id=series.service_id,
                    booking_date=occurrence_date,
                    start_time=series.time_slot,
                    duration_minutes=series.duration_minutes,
                    notes=series.notes,
                    series_id=series.id,
                    now=now,
                )
                result.occurrences.append(booking)
            except ConflictError as e:
                result.skipped.append({"date": occurrence_date, "reason": "conflict", "detail": e.message})
            except (PolicyViolationError, ValidationError) as e:
                result.skipped.append({"date": occurrence_date, "reason": e.code, "detail": e.message})

        if until is not None:
            series.materialized_until = until
        elif dates:
            series.materialized_until = max(dates[-1], series.materialized_until or dates[-1])
        self.db.commit()
        self.db.refresh(series)
        return result

    def extend_horizon(self, series_id: UUID, now: Optional[datetime] = None) -> SeriesResult:
        """Materialize an open-ended series up to the rolling horizon"""
        now = ensure_utc(now) or utcnow()
        series = self._get_series(series_id)

        if series.status != SeriesStatus.ACTIVE.value or not series.is_open_ended:
            return SeriesResult(series=series)

        from_date = series.start_date
        if series.materialized_until:
            from_date = max(from_date, series.materialized_until + timedelta(days=1))
        if from_date > self._horizon(now):
            return SeriesResult(series=series)

        return self._materialize(series, from_date=from_date, now=now)

    def extend_all_horizons(self, now: Optional[datetime] = None) -> Dict[str, int]:
        now = ensure_utc(now) or utcnow()
        horizon = self._horizon(now)

        series_ids = [
            row.id for row in self.db.query(RecurringBookingSeries.id).filter(
                RecurringBookingSeries.status == SeriesStatus.ACTIVE.value,
                RecurringBookingSeries.end_date.is_(None),
                RecurringBookingSeries.occurrences.is_(None),
                (RecurringBookingSeries.materialized_until.is_(None))
                | (RecurringBookingSeries.materialized_until < horizon),
            ).all()
        ]

        stats = {"series": len(series_ids), "created": 0, "skipped": 0, "errors": 0}
        for series_id in series_ids:
            try:
                result = self.extend_horizon(series_id, now=now)
                stats["created"] += len(result.occurrences)
                stats["skipped"] += len(result.skipped)
            except (BookingEngineError, SQLAlchemyError) as e:
                self.db.rollback()
                logger.error(f"Horizon extension failed for series {series_id}: {e}")
                stats["errors"] += 1

        logger.info(f"Horizon extension: {stats}")
        return stats

    # ------------------------------------------------------------------
    # Pause / resume / cancel
    # ------------------------------------------------------------------

    def _cancel_occurrences(self, series: RecurringBookingSeries, actor_id: UUID, reason: str,
                            effects: EffectBatch, now: datetime, future_only: bool = True) -> int:
        bookings = self.db.query(Booking).filter(
            Booking.recurring_series_id == series.id,
            Booking.status.in_(_CANCELLABLE)
        ).with_for_update().all()

        cancelled = 0
        for booking in bookings:
            if future_only and booking.starts_at <= now:
                continue
            decision = self.bookings.policies.evaluate_booking(
                booking, PolicyType.CANCELLATION.value, actor_id=actor_id, now=now
            )
            if not decision.allowed:
                raise PolicyViolationError(
                    decision.reason or "Cancellation not allowed",
                    dict(decision.to_dict(), booking_id=str(booking.id))
                )
            self.bookings.apply_cancellation(booking, actor_id, decision.penalty, reason, effects, now)
            cancelled += 1
        return cancelled

    def pause_series(self, series_id: UUID, actor_id: UUID, now: Optional[datetime] = None) -> SeriesResult:
        now = ensure_utc(now) or utcnow()
        effects = EffectBatch()

        try:
            series = self._get_series(series_id, for_update=True)
            if actor_id != series.customer_id:
                raise AuthorizationError("Only the customer can pause a recurring series")
            if series.status != SeriesStatus.ACTIVE.value:
                raise ConflictError(f"Series is {series.status}, only active series can be paused")

            series.status = SeriesStatus.PAUSED.value
            cancelled = self._cancel_occurrences(series, actor_id, "Recurring series paused", effects, now)
            self.db.commit()
        except (BookingEngineError, SQLAlchemyError):
            self.db.rollback()
            raise

        self.db.refresh(series)
        logger.info(f"Series {series_id} paused, {cancelled} future occurrences cancelled")
        if self.dispatcher and len(effects):
            self.dispatcher.dispatch(effects.effects)
        return SeriesResult(series=series, cancelled=cancelled)

    def resume_series(self, series_id: UUID, actor_id: UUID, from_date: Optional[date] = None,
                      now: Optional[datetime] = None) -> SeriesResult:
        now = ensure_utc(now) or utcnow()

        try:
            series = self._get_series(series_id, for_update=True)
            if actor_id != series.customer_id:
                raise AuthorizationError("Only the customer can resume a recurring series")
            if series.status != SeriesStatus.PAUSED.value:
                raise ConflictError(f"Series is {series.status}, only paused series can be resumed")

            series.status = SeriesStatus.ACTIVE.value
            self.db.commit()
        except (BookingEngineError, SQLAlchemyError):
            self.db.rollback()
            raise

        from_date = max(from_date or now.date(), series.start_date)
        result = self._materialize(series, from_date=from_date, now=now)
        logger.info(f"Series {series_id} resumed from {from_date}: {len(result.occurrences)} occurrences")
        return result

    def cancel_series(self, series_id: UUID, actor_id: UUID, cancel_future_only: bool = True,
                      confirm: bool = False, now: Optional[datetime] = None) -> SeriesResult:
        """Future-only by default; cancelling past open occurrences too needs ``confirm``"""
        now = ensure_utc(now) or utcnow()
        effects = EffectBatch()

        if not cancel_future_only and not confirm:
            raise PolicyViolationError("Cancelling every occurrence of a series requires confirmation")

        try:
            series = self._get_series(series_id, for_update=True)
            if actor_id != series.customer_id:
                raise AuthorizationError("Only the customer can cancel a recurring series")
            if series.status == SeriesStatus.CANCELLED.value:
                raise ConflictError("Series is already cancelled")

            series.status = SeriesStatus.CANCELLED.value
            cancelled = self._cancel_occurrences(
                series, actor_id, "Recurring series cancelled", effects, now, future_only=cancel_future_only
            )
            self.db.commit()
        except (BookingEngineError, SQLAlchemyError):
            self.db.rollback()
            raise

        self.db.refresh(series)
        logger.info(f"Series {series_id} cancelled, {cancelled} occurrences cancelled")
        if self.dispatcher and len(effects):
            self.dispatcher.dispatch(effects.effects)
        return SeriesResult(series=series, cancelled=cancelled)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_series(self, series_id: UUID, actor_id: UUID, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = ensure_utc(now) or utcnow()
        series = self._get_series(series_id)
        if actor_id not in (series.customer_id, series.provider_id):
            raise AuthorizationError("You are not a party to this series")

        upcoming: List[date] = []
        if series.status == SeriesStatus.ACTIVE.value:
            rule = RecurrenceRule.from_series(series)
            upcoming = occurrence_dates(
                rule, until=self._horizon(now) if rule.is_open_ended else None, from_date=now.date()
            )[:10]

        return {"series": series, "bookings": list(series.bookings), "upcoming_dates": upcoming}

    def list_series(self, user_id: UUID, status: Optional[str] = None) -> List[RecurringBookingSeries]:
        query = self.db.query(RecurringBookingSeries).filter(
            (RecurringBookingSeries.customer_id == user_id) | (RecurringBookingSeries.provider_id == user_id)
        )
        if status:
            try:
                status = SeriesStatus(status).value
            except ValueError:
                raise ValidationError(f"Unknown series status: {status}")
            query = query.filter(RecurringBookingSeries.status == status)
        return query.order_by(RecurringBookingSeries.created_at.desc()).all()
