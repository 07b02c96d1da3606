# ============================================================================
# marketplace/services/booking/booking_service.py
# Booking lifecycle: creation, provider decisions, cancellation, no-show,
# rescheduling and completion
# ============================================================================
import logging
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from marketplace.config.settings import Settings, get_settings
from marketplace.core.exceptions import (
    AuthorizationError, BookingEngineError, ConflictError, NotFoundError, PolicyViolationError, ValidationError
)
from marketplace.models.booking import Booking, BookingStatus
from marketplace.models.booking_policy import PolicyType
from marketplace.models.payment import Payment, PaymentStatus
from marketplace.models.service import Service
from marketplace.services.availability.time_slot_service import TimeSlotGenerator
from marketplace.services.booking.conflict_checker import ConflictChecker
from marketplace.services.booking.effects import EffectBatch, EffectDispatcher
from marketplace.services.booking.state_machine import BookingStateMachine
from marketplace.services.escrow.escrow_service import EscrowService
from marketplace.services.notification.notification_service import NotificationEvent
from marketplace.services.policy.policy_service import PolicyDecision, PolicyService
from marketplace.utils.time_utils import add_minutes, combine_utc, ensure_utc, minutes_between, utcnow

logger = logging.getLogger(__name__)


class BookingService:
    """BookingStateMachine with its side effects"""

    def __init__(self, db: Session, dispatcher: Optional[EffectDispatcher] = None,
                 settings: Optional[Settings] = None):
        self.db = db
        self.dispatcher = dispatcher
        self.settings = settings or get_settings()
        self.policies = PolicyService(db, self.settings)
        self.escrow = EscrowService(db, dispatcher, self.settings)

    def _dispatch(self, effects: EffectBatch) -> None:
        if self.dispatcher and len(effects):
            self.dispatcher.dispatch(effects.effects)

    def _load_for_update(self, booking_id: UUID) -> Booking:
        booking = self.db.query(Booking).filter(Booking.id == booking_id).with_for_update().first()
        if not booking:
            raise NotFoundError("Booking not found", {"booking_id": str(booking_id)})
        return booking

    @staticmethod
    def _require_provider(booking: Booking, actor_id: UUID) -> None:
        if actor_id != booking.provider_id:
            raise AuthorizationError("Only the provider can perform this action")

    @staticmethod
    def _require_party(booking: Booking, actor_id: UUID) -> None:
        if not booking.is_party(actor_id):
            raise AuthorizationError("You are not a party to this booking")

    @staticmethod
    def _other_party(booking: Booking, actor_id: UUID) -> UUID:
        return booking.provider_id if actor_id == booking.customer_id else booking.customer_id

    @staticmethod
    def _end_time(start_time: time, duration_minutes: int) -> time:
        end_time = add_minutes(start_time, duration_minutes)
        if minutes_between(start_time, end_time) != duration_minutes:
            raise ValidationError("A booking cannot extend past midnight")
        return end_time

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_booking(
            self,
            customer_id: UUID,
            service_id: UUID,
            booking_date: date,
            start_time: time,
            duration_minutes: Optional[int] = None,
            notes: Optional[str] = None,
            series_id: Optional[UUID] = None,
            now: Optional[datetime] = None
    ) -> Booking:
        """
        Conflict check and insert as one transaction.

        The provider row is locked first so concurrent requests for the same
        provider queue up; the partial unique index on active bookings turns
        any race that slips through into an IntegrityError -> ConflictError.
        """
        now = ensure_utc(now) or utcnow()

        service = self.db.query(Service).filter(Service.id == service_id).first()
        if not service:
            raise NotFoundError("Service not found", {"service_id": str(service_id)})
        if not service.is_bookable:
            raise PolicyViolationError("This service is not accepting bookings")
        if service.provider_id == customer_id:
            raise PolicyViolationError("You cannot book your own service")

        duration = service.duration_minutes if duration_minutes is None else duration_minutes
        if duration <= 0:
            raise ValidationError("Booking duration must be positive")
        end_time = self._end_time(start_time, duration)

        if combine_utc(booking_date, start_time) <= now:
            raise ValidationError("Cannot book a time in the past")

        total = Decimal(service.price)
        fee, net = EscrowService.calculate_fees(total, self.settings.PLATFORM_FEE_PERCENT)
        effects = EffectBatch()

        try:
            ConflictChecker.lock_provider(self.db, service.provider_id)
            ConflictChecker.ensure_available(
                self.db, service.provider_id, booking_date, start_time, end_time,
                buffer_minutes=service.buffer_minutes
            )
            ConflictChecker.ensure_capacity(self.db, service, booking_date)

            booking = Booking(
                service_id=service.id,
                customer_id=customer_id,
                provider_id=service.provider_id,
                recurring_series_id=series_id,
                booking_date=booking_date,
                start_time=start_time,
                end_time=end_time,
                duration_minutes=duration,
                price=service.price,
                service_fee=fee,
                total_amount=total,
                penalty_amount=Decimal(0),
                status=BookingStatus.PENDING.value,
                notes=notes,
            )
            self.db.add(booking)
            self.db.flush()

            self.db.add(Payment(
                booking_id=booking.id,
                amount=total,
                service_fee=fee,
                net_amount=net,
                status=PaymentStatus.PENDING.value,
            ))
            TimeSlotGenerator.book_slots(self.db, booking)

            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            logger.info(f"Booking race lost for provider {service.provider_id} on {booking_date} {start_time}")
            raise ConflictError("The provider is already booked for this time") from e
        except (BookingEngineError, SQLAlchemyError):
            self.db.rollback()
            raise

        self.db.refresh(booking)
        logger.info(f"Booking {booking.id} created ({booking_date} {start_time:%H:%M}, {duration} min)")

        effects.notify(NotificationEvent.BOOKING_CREATED, booking.provider_id,
                       booking_id=booking.id, date=booking_date, start_time=start_time.strftime("%H:%M"))
        self._dispatch(effects)
        return booking

    # ------------------------------------------------------------------
    # Provider decisions
    # ------------------------------------------------------------------

    def accept_booking(self, booking_id: UUID, actor_id: UUID, now: Optional[datetime] = None) -> Booking:
        now = ensure_utc(now) or utcnow()
        effects = EffectBatch()

        try:
            booking = self._load_for_update(booking_id)
            self._require_provider(booking, actor_id)
            BookingStateMachine.assert_transition(booking.status, BookingStatus.ACCEPTED)

            booking.status = BookingStatus.ACCEPTED.value
            booking.confirmed_at = now
            self.escrow.schedule_tentative(booking)

            self.db.commit()
        except (BookingEngineError, SQLAlchemyError):
            self.db.rollback()
            raise

        self.db.refresh(booking)
        logger.info(f"Booking {booking_id} accepted")

        if booking.payment:
            effects.capture(booking.payment.id)
        effects.notify(NotificationEvent.BOOKING_ACCEPTED, booking.customer_id, booking_id=booking.id)
        self._dispatch(effects)
        return booking

    def decline_booking(self, booking_id: UUID, actor_id: UUID, reason: Optional[str] = None,
                        now: Optional[datetime] = None) -> Booking:
        now = ensure_utc(now) or utcnow()
        effects = EffectBatch()

        try:
            booking = self._load_for_update(booking_id)
            self._require_provider(booking, actor_id)
            BookingStateMachine.assert_transition(booking.status, BookingStatus.DECLINED)

            booking.status = BookingStatus.DECLINED.value
            booking.cancellation_reason = reason
            booking.cancelled_by = actor_id
            booking.cancelled_at = now
            self._settle_payment(booking, Decimal(0), effects)
            TimeSlotGenerator.release_slots(self.db, booking)

            self.db.commit()
        except (BookingEngineError, SQLAlchemyError):
            self.db.rollback()
            raise

        self.db.refresh(booking)
        logger.info(f"Booking {booking_id} declined")

        effects.notify(NotificationEvent.BOOKING_DECLINED, booking.customer_id,
                       booking_id=booking.id, reason=reason or "")
        self._dispatch(effects)
        return booking

    def start_booking(self, booking_id: UUID, actor_id: UUID, now: Optional[datetime] = None) -> Booking:
        now = ensure_utc(now) or utcnow()
        effects = EffectBatch()

        try:
            booking = self._load_for_update(booking_id)
            self._require_provider(booking, actor_id)
            BookingStateMachine.assert_transition(booking.status, BookingStatus.IN_PROGRESS)

            booking.status = BookingStatus.IN_PROGRESS.value
            booking.started_at = now

            self.db.commit()
        except (BookingEngineError, SQLAlchemyError):
            self.db.rollback()
            raise

        self.db.refresh(booking)
        effects.notify(NotificationEvent.BOOKING_STARTED, booking.customer_id, booking_id=booking.id)
        self._dispatch(effects)
        return booking

    def complete_booking(self, booking_id: UUID, actor_id: Optional[UUID] = None,
                         now: Optional[datetime] = None, system: bool = False) -> Booking:
        """Provider completes explicitly; the system only once the service end has passed"""
        now = ensure_utc(now) or utcnow()
        effects = EffectBatch()

        try:
            booking = self._load_for_update(booking_id)
            if system:
                if booking.ends_at > now:
                    raise PolicyViolationError("Booking has not ended yet")
            else:
                self._require_provider(booking, actor_id)
            BookingStateMachine.assert_transition(booking.status, BookingStatus.COMPLETED)

            booking.status = BookingStatus.COMPLETED.value
            booking.completed_at = now
            self.escrow.apply_completion(booking)

            self.db.commit()
        except (BookingEngineError, SQLAlchemyError):
            self.db.rollback()
            raise

        self.db.refresh(booking)
        logger.info(f"Booking {booking_id} completed{' automatically' if system else ''}")

        effects.notify(NotificationEvent.BOOKING_COMPLETED, booking.customer_id, booking_id=booking.id)
        effects.notify(NotificationEvent.BOOKING_COMPLETED, booking.provider_id, booking_id=booking.id)
        self._dispatch(effects)
        return booking

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def _settle_payment(self, booking: Booking, penalty: Decimal, effects: EffectBatch) -> None:
        """
        Refund what the customer is owed; an uncaptured payment is simply voided.

        A payment mid-capture is left to PaymentService.capture, which refunds
        once it sees the booking is no longer capturable.
        """
        payment = booking.payment
        if payment is None:
            return

        if payment.status == PaymentStatus.PAID.value:
            refund = Decimal(payment.amount) - penalty
            if refund > 0:
                effects.refund(payment.id, refund)
        elif payment.status == PaymentStatus.PENDING.value:
            payment.status = PaymentStatus.VOIDED.value

    def apply_cancellation(self, booking: Booking, actor_id: UUID, penalty: Decimal,
                           reason: Optional[str], effects: EffectBatch, now: datetime,
                           no_show: bool = False) -> None:
        """Cancel a locked booking inside the caller's transaction (no commit)"""
        BookingStateMachine.assert_transition(booking.status, BookingStatus.CANCELLED)

        booking.status = BookingStatus.CANCELLED.value
        booking.penalty_amount = penalty
        booking.cancellation_reason = reason
        booking.cancelled_by = actor_id
        booking.cancelled_at = now
        booking.is_no_show = no_show

        self._settle_payment(booking, penalty, effects)
        TimeSlotGenerator.release_slots(self.db, booking)

        event = NotificationEvent.BOOKING_NO_SHOW if no_show else NotificationEvent.BOOKING_CANCELLED
        effects.notify(event, self._other_party(booking, actor_id),
                       booking_id=booking.id, penalty=penalty, reason=reason or "")

    def cancel_booking(
            self,
            booking_id: UUID,
            actor_id: UUID,
            reason: Optional[str] = None,
            reason_code: Optional[str] = None,
            now: Optional[datetime] = None
    ) -> Tuple[Booking, PolicyDecision]:
        """Either party cancels; the policy decision and the status change commit together"""
        now = ensure_utc(now) or utcnow()
        effects = EffectBatch()

        try:
            booking = self._load_for_update(booking_id)
            self._require_party(booking, actor_id)
            BookingStateMachine.assert_transition(booking.status, BookingStatus.CANCELLED)

            decision = self.policies.evaluate_booking(
                booking, PolicyType.CANCELLATION.value, actor_id=actor_id, reason_code=reason_code, now=now
            )
            if not decision.allowed:
                raise PolicyViolationError(decision.reason or "Cancellation not allowed", decision.to_dict())

            self.apply_cancellation(booking, actor_id, decision.penalty, reason, effects, now)
            self.db.commit()
        except (BookingEngineError, SQLAlchemyError):
            self.db.rollback()
            raise

        self.db.refresh(booking)
        logger.info(f"Booking {booking_id} cancelled by {actor_id} (penalty {decision.penalty})")
        self._dispatch(effects)
        return booking, decision

    def mark_no_show(self, booking_id: UUID, actor_id: UUID,
                     now: Optional[datetime] = None) -> Tuple[Booking, PolicyDecision]:
        now = ensure_utc(now) or utcnow()
        effects = EffectBatch()

        try:
            booking = self._load_for_update(booking_id)
            self._require_provider(booking, actor_id)
            if booking.status != BookingStatus.ACCEPTED.value:
                BookingStateMachine.assert_transition(booking.status, BookingStatus.CANCELLED)
                raise PolicyViolationError("Only accepted bookings can be marked as no-show")
            if booking.starts_at > now:
                raise PolicyViolationError("Booking has not started yet")

            decision = self.policies.evaluate_booking(
                booking, PolicyType.NO_SHOW.value, actor_id=actor_id, now=now
            )
            if not decision.allowed:
                raise PolicyViolationError(decision.reason or "No-show not allowed", decision.to_dict())

            self.apply_cancellation(booking, actor_id, decision.penalty, "Customer did not show up",
                                    effects, now, no_show=True)
            self.db.commit()
        except (BookingEngineError, SQLAlchemyError):
            self.db.rollback()
            raise

        self.db.refresh(booking)
        logger.info(f"Booking {booking_id} marked as no-show (penalty {decision.penalty})")
        self._dispatch(effects)
        return booking, decision

    # ------------------------------------------------------------------
    # Rescheduling
    # ------------------------------------------------------------------

    def reschedule_booking(
            self,
            booking_id: UUID,
            actor_id: UUID,
            new_date: date,
            new_start_time: time,
            now: Optional[datetime] = None
    ) -> Tuple[Booking, PolicyDecision]:
        now = ensure_utc(now) or utcnow()
        effects = EffectBatch()

        try:
            booking = self._load_for_update(booking_id)
            self._require_party(booking, actor_id)
            if BookingStateMachine.is_terminal(booking.status):
                raise ConflictError(f"Booking is already {booking.status}")
            if booking.status not in (BookingStatus.PENDING.value, BookingStatus.ACCEPTED.value):
                raise PolicyViolationError(f"A booking that is {booking.status} cannot be rescheduled")

            if combine_utc(new_date, new_start_time) <= now:
                raise ValidationError("Cannot reschedule to a time in the past")
            new_end_time = self._end_time(new_start_time, booking.duration_minutes)

            decision = self.policies.evaluate_booking(
                booking, PolicyType.RESCHEDULING.value, new_date=new_date, actor_id=actor_id, now=now
            )
            if not decision.allowed:
                raise PolicyViolationError(decision.reason or "Rescheduling not allowed", decision.to_dict())

            ConflictChecker.lock_provider(self.db, booking.provider_id)
            ConflictChecker.ensure_available(
                self.db, booking.provider_id, new_date, new_start_time, new_end_time,
                exclude_booking_id=booking.id, buffer_minutes=booking.service.buffer_minutes
            )
            ConflictChecker.ensure_capacity(self.db, booking.service, new_date, exclude_booking_id=booking.id)

            old_date, old_start = booking.booking_date, booking.start_time
            TimeSlotGenerator.release_slots(self.db, booking)
            booking.booking_date = new_date
            booking.start_time = new_start_time
            booking.end_time = new_end_time
            booking.penalty_amount = Decimal(booking.penalty_amount or 0) + decision.penalty
            self.db.flush()
            TimeSlotGenerator.book_slots(self.db, booking)

            if booking.status == BookingStatus.ACCEPTED.value:
                self.escrow.schedule_tentative(booking)

            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise ConflictError("The provider is already booked for this time") from e
        except (BookingEngineError, SQLAlchemyError):
            self.db.rollback()
            raise

        self.db.refresh(booking)
        logger.info(f"Booking {booking_id} moved from {old_date} {old_start} to {new_date} {new_start_time}")

        effects.notify(NotificationEvent.BOOKING_RESCHEDULED, self._other_party(booking, actor_id),
                       booking_id=booking.id, date=new_date, start_time=new_start_time.strftime("%H:%M"))
        self._dispatch(effects)
        return booking, decision

    # ------------------------------------------------------------------
    # Queries and batch
    # ------------------------------------------------------------------

    def get_booking(self, booking_id: UUID, actor_id: UUID) -> Booking:
        booking = self.db.query(Booking).filter(Booking.id == booking_id).first()
        if not booking:
            raise NotFoundError("Booking not found", {"booking_id": str(booking_id)})
        self._require_party(booking, actor_id)
        return booking

    def list_bookings(self, user_id: UUID, role: str = "customer", status: Optional[str] = None,
                      limit: int = 50, offset: int = 0) -> List[Booking]:
        if role == "customer":
            query = self.db.query(Booking).filter(Booking.customer_id == user_id)
        elif role == "provider":
            query = self.db.query(Booking).filter(Booking.provider_id == user_id)
        else:
            raise ValidationError("role must be 'customer' or 'provider'")

        if status:
            try:
                status = BookingStatus(status).value
            except ValueError:
                raise ValidationError(f"Unknown booking status: {status}")
            query = query.filter(Booking.status == status)

        return query.order_by(Booking.booking_date.desc(), Booking.start_time.desc()) \
            .offset(offset).limit(limit).all()

    def complete_past_bookings(self, now: Optional[datetime] = None) -> int:
        """Auto-complete accepted / in-progress bookings whose service end has passed"""
        now = ensure_utc(now) or utcnow()

        candidates = self.db.query(Booking.id, Booking.booking_date, Booking.end_time).filter(
            Booking.status.in_([BookingStatus.ACCEPTED.value, BookingStatus.IN_PROGRESS.value]),
            Booking.booking_date <= now.date(),
            Booking.booking_date >= now.date() - timedelta(days=365),
        ).all()

        completed = 0
        for booking_id, booking_date, end_time in candidates:
            if combine_utc(booking_date, end_time) > now:
                continue
            try:
                self.complete_booking(booking_id, now=now, system=True)
                completed += 1
            except BookingEngineError as e:
                logger.warning(f"Auto-complete skipped booking {booking_id}: {e.message}")

        logger.info(f"Auto-completed {completed} bookings")
        return completed
