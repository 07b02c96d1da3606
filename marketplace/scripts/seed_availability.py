# ===== marketplace/scripts/seed_availability.py =====
"""Seed a demo provider with a service, weekday availability, default policies and two weeks of slots"""
import logging
from datetime import date, time, timedelta
from decimal import Decimal

from sqlalchemy.exc import SQLAlchemyError

from marketplace.config.database import SessionLocal
from marketplace.core.exceptions import BookingEngineError
from marketplace.models import BookingPolicy, Service, User
from marketplace.services.availability.availability_service import AvailabilityService
from marketplace.services.availability.time_slot_service import TimeSlotGenerator
from marketplace.services.policy.policy_service import PolicyService
from marketplace.utils.my_logging import setup_logging

logger = logging.getLogger(__name__)

PROVIDER_EMAIL = "demo.provider@example.com"


def seed_availability():
    db = SessionLocal()

    try:
        provider = db.query(User).filter_by(email=PROVIDER_EMAIL).first()
        if not provider:
            provider = User(email=PROVIDER_EMAIL, full_name="Demo Provider", is_professional=True)
            db.add(provider)
            db.commit()

        service = db.query(Service).filter_by(provider_id=provider.id).first()
        if not service:
            service = Service(
                provider_id=provider.id,
                title="Home cleaning",
                price=Decimal("120.00"),
                duration_minutes=120,
            )
            db.add(service)
            db.commit()

        # 1. Mon-Fri 09:00-17:00 (1=Monday ... 5=Friday)
        for day in range(1, 6):
            AvailabilityService.set_availability(db, provider.id, day, time(9, 0), time(17, 0))

        # 2. Default policies from the templates
        if not db.query(BookingPolicy).filter_by(service_id=service.id).first():
            for template in PolicyService.policy_templates():
                if template["name"] == "Flexible cancellation":
                    continue
                db.add(BookingPolicy(service_id=service.id, **template))
            db.commit()

        # 3. Two weeks of slots
        start = date.today() + timedelta(days=1)
        slots = TimeSlotGenerator.generate(
            db, provider.id, start, start + timedelta(days=13), service.duration_minutes, service.id
        )

        logger.info(f"✅ Seeded provider {provider.id}, service {service.id}, {len(slots)} new slots")

    except (BookingEngineError, SQLAlchemyError) as e:
        db.rollback()
        logger.error(f"❌ Error seeding availability: {e}")
        raise
    finally:
        db.close()


if __name__ == "__main__":
    setup_logging()
    seed_availability()
