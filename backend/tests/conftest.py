# backend/tests/conftest.py
"""
Pytest configuration for the booking engine.

Testing mode is switched on before any package import so the module-level
engine in ``therapy_booking.database`` is built against SQLite and never
against a configured production URL.
"""

import os

# Set testing mode BEFORE any package imports.
os.environ["is_testing"] = "true"

from datetime import date
from typing import Callable, Dict, Optional

import jwt
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from therapy_booking.core.config import settings
from therapy_booking.core.enums import RoleName
from therapy_booking.database import Base
from therapy_booking.integrations.payhere import PayHereSigner, format_amount
from therapy_booking.models import (
    AvailabilityRule,
    Patient,
    PatientGuardian,
    Therapist,
    User,
)
from therapy_booking.principal import UserPrincipal
from therapy_booking.schemas.payment import CustomerInfo, PayHereCallback, PaymentInitiateRequest
from therapy_booking.services.availability_service import AvailabilityService
from therapy_booking.services.booking_service import BookingService
from therapy_booking.services.cancellation_service import CancellationService
from therapy_booking.services.notification_service import NotificationService
from therapy_booking.services.payment_service import PaymentService

from tests.factories.booking_data import (
    FIXED_NOW,
    MERCHANT_ID,
    MERCHANT_SECRET,
    SESSION_RATE,
    TUESDAY,
    FrozenClock,
)

settings.is_testing = True


@pytest.fixture
def db() -> Session:
    """
    Fresh in-memory database per test.

    Services commit through BaseService.transaction(), so each test gets
    its own engine rather than a rolled-back outer transaction.
    """
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    TestingSessionLocal = sessionmaker(
        bind=engine, autocommit=False, autoflush=False, expire_on_commit=False
    )
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(FIXED_NOW)


# Collaborator records


def _user(db: Session, email: str, name: str, role: RoleName) -> User:
    user = User(email=email, name=name, role=role.value)
    db.add(user)
    db.flush()
    return user


@pytest.fixture
def admin_user(db) -> User:
    user = _user(db, "admin@clinic.lk", "Clinic Admin", RoleName.ADMIN)
    db.commit()
    return user


@pytest.fixture
def therapist(db) -> Therapist:
    user = _user(db, "therapist@clinic.lk", "Dr. Nimali Perera", RoleName.THERAPIST)
    profile = Therapist(user_id=user.id, session_rate=SESSION_RATE)
    db.add(profile)
    db.commit()
    return profile


@pytest.fixture
def patient(db, therapist) -> Patient:
    user = _user(db, "kasun@example.com", "Kasun Silva", RoleName.PATIENT)
    record = Patient(
        user_id=user.id, first_name="Kasun", last_name="Silva", primary_therapist_id=therapist.id
    )
    db.add(record)
    db.commit()
    return record


@pytest.fixture
def guardian_user(db) -> User:
    user = _user(db, "parent@example.com", "Dilini Fernando", RoleName.PARENT)
    db.commit()
    return user


@pytest.fixture
def child_patient(db, therapist, guardian_user) -> Patient:
    child = Patient(first_name="Sahan", last_name="Fernando", primary_therapist_id=therapist.id)
    db.add(child)
    db.flush()
    db.add(PatientGuardian(patient_id=child.id, user_id=guardian_user.id))
    db.commit()
    return child


@pytest.fixture
def admin_principal(admin_user) -> UserPrincipal:
    return UserPrincipal(user_id=admin_user.id, role=RoleName.ADMIN)


@pytest.fixture
def therapist_principal(therapist) -> UserPrincipal:
    return UserPrincipal(user_id=therapist.user_id, role=RoleName.THERAPIST)


@pytest.fixture
def patient_principal(patient) -> UserPrincipal:
    return UserPrincipal(user_id=patient.user_id, role=RoleName.PATIENT)


@pytest.fixture
def guardian_principal(guardian_user) -> UserPrincipal:
    return UserPrincipal(user_id=guardian_user.id, role=RoleName.PARENT)


@pytest.fixture
def tuesday_rule(db, therapist) -> AvailabilityRule:
    """Tuesdays 09:00-12:00, 45 minute sessions with 15 minute breaks."""
    rule = AvailabilityRule(
        therapist_id=therapist.id,
        day_of_week=TUESDAY.weekday(),
        start_time="09:00",
        end_time="12:00",
        session_duration=45,
        break_between_sessions=15,
    )
    db.add(rule)
    db.commit()
    return rule


@pytest.fixture
def free_tuesday_rule(db, therapist) -> AvailabilityRule:
    rule = AvailabilityRule(
        therapist_id=therapist.id,
        day_of_week=TUESDAY.weekday(),
        start_time="14:00",
        end_time="16:00",
        session_duration=45,
        break_between_sessions=15,
        is_free=True,
    )
    db.add(rule)
    db.commit()
    return rule


# Services


@pytest.fixture
def signer() -> PayHereSigner:
    return PayHereSigner(merchant_id=MERCHANT_ID, merchant_secret=MERCHANT_SECRET)


@pytest.fixture
def notification_service(db) -> NotificationService:
    return NotificationService(db)


@pytest.fixture
def availability_service(db, clock) -> AvailabilityService:
    return AvailabilityService(db, clock=clock)


@pytest.fixture
def booking_service(db, clock, notification_service, availability_service) -> BookingService:
    return BookingService(
        db,
        notification_service=notification_service,
        availability_service=availability_service,
        clock=clock,
    )


@pytest.fixture
def payment_service(db, clock, signer, booking_service, notification_service) -> PaymentService:
    return PaymentService(
        db,
        signer=signer,
        booking_service=booking_service,
        notification_service=notification_service,
        clock=clock,
    )


@pytest.fixture
def cancellation_service(
    db, clock, notification_service, availability_service
) -> CancellationService:
    return CancellationService(
        db,
        notification_service=notification_service,
        availability_service=availability_service,
        clock=clock,
    )


# Gateway helpers


@pytest.fixture
def customer() -> CustomerInfo:
    return CustomerInfo(
        first_name="Kasun",
        last_name="Silva",
        email="kasun@example.com",
        phone="0771234567",
        address="12 Galle Road",
        city="Colombo",
    )


@pytest.fixture
def notification_fields(signer) -> Callable[..., Dict[str, str]]:
    """Build a correctly signed PayHere notify form."""

    def build(
        order_id: str,
        amount,
        status_code: str = "2",
        currency: str = "LKR",
        method: Optional[str] = "VISA",
    ) -> Dict[str, str]:
        amount_text = amount if isinstance(amount, str) else format_amount(amount)
        fields = {
            "merchant_id": MERCHANT_ID,
            "order_id": order_id,
            "payment_id": "320025071234",
            "payhere_amount": amount_text,
            "payhere_currency": currency,
            "status_code": status_code,
            "status_message": "Successfully completed the payment.",
            "md5sig": signer.notification_hash(
                MERCHANT_ID, order_id, amount_text, currency, status_code
            ),
        }
        if method:
            fields["method"] = method
        return fields

    return build


@pytest.fixture
def book_paid_session(payment_service, customer, notification_fields):
    """
    Run the full paid flow: initiate, then a COMPLETED gateway notification.

    Returns the session id created by the notification.
    """

    def book(
        principal: UserPrincipal,
        therapist_id: str,
        day: date = TUESDAY,
        time_slot: str = "09:00",
        patient_id: Optional[str] = None,
    ) -> str:
        intent = payment_service.initiate_payment(
            principal,
            PaymentInitiateRequest(
                patient_id=patient_id,
                therapist_id=therapist_id,
                date=day,
                time_slot=time_slot,
                amount=SESSION_RATE,
                customer=customer,
            ),
        )
        ack = payment_service.handle_gateway_callback(
            PayHereCallback(**notification_fields(intent.order_id, SESSION_RATE))
        )
        assert ack.session_id is not None
        return ack.session_id

    return book


@pytest.fixture
def auth_headers() -> Callable[..., Dict[str, str]]:
    def build(user: User, role: Optional[str] = None) -> Dict[str, str]:
        token = jwt.encode(
            {"sub": user.id, "role": role or user.role},
            settings.jwt_secret_key.get_secret_value(),
            algorithm=settings.jwt_algorithm,
        )
        return {"Authorization": f"Bearer {token}"}

    return build
