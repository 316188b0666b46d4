"""
Shared fixtures: a fresh in-memory SQLite database per test, a pinned clock,
a static listing directory and a recording notification dispatcher.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Iterator, List

from fastapi.testclient import TestClient
import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.auth import create_access_token
from app.core.clock import FixedClock, get_clock
from app.database import Base
from app.integrations import StaticListingDirectory
import app.models  # noqa: F401
from app.models.appointment import Appointment, AppointmentStatus
from app.models.payment import Payment, PaymentStatus
from app.notifications import Notification
from app.principal import Actor, ActorRole
from app.services.appointment_service import AppointmentService
from app.services.notification_service import NotificationService
from app.services.payment_service import PaymentService
from app.services.refund_request_service import RefundRequestService

BUYER_ID = "buyer-1"
OTHER_BUYER_ID = "buyer-2"
SELLER_ID = "seller-1"
ADMIN_ID = "admin-1"
LISTING_ID = "listing-1"
OTHER_LISTING_ID = "listing-2"

# 2025-03-10 09:00 in the engine timezone (UTC)
NOW = datetime(2025, 3, 10, 9, 0, tzinfo=timezone.utc)
TOMORROW = date(2025, 3, 11)
YESTERDAY = date(2025, 3, 9)
TEN_AM = time(10, 0)

BUYER = Actor(id=BUYER_ID, role=ActorRole.BUYER)
SELLER = Actor(id=SELLER_ID, role=ActorRole.SELLER)
ADMIN = Actor(id=ADMIN_ID, role=ActorRole.ADMIN)


class RecordingDispatcher:
    def __init__(self) -> None:
        self.sent: List[Notification] = []

    def dispatch(self, notification: Notification) -> None:
        self.sent.append(notification)

    def event_types(self) -> List[str]:
        return [notification.event_type for notification in self.sent]


class FailingDispatcher:
    def dispatch(self, notification: Notification) -> None:
        raise RuntimeError("notification backend down")


@pytest.fixture
def db_engine() -> Iterator[Engine]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        future=True,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(db_engine: Engine) -> sessionmaker:
    return sessionmaker(bind=db_engine, autoflush=False, expire_on_commit=False, future=True)


@pytest.fixture
def db(session_factory: sessionmaker) -> Iterator[Session]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(NOW)


@pytest.fixture
def listing_directory() -> StaticListingDirectory:
    return StaticListingDirectory({LISTING_ID: SELLER_ID, OTHER_LISTING_ID: OTHER_BUYER_ID})


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def notification_service(dispatcher: RecordingDispatcher) -> NotificationService:
    return NotificationService(dispatcher)


@pytest.fixture
def appointment_service(
    db: Session,
    clock: FixedClock,
    listing_directory: StaticListingDirectory,
    notification_service: NotificationService,
) -> AppointmentService:
    return AppointmentService(
        db,
        clock=clock,
        listing_directory=listing_directory,
        notification_service=notification_service,
    )


@pytest.fixture
def payment_service(
    db: Session, clock: FixedClock, notification_service: NotificationService
) -> PaymentService:
    return PaymentService(db, clock=clock, notification_service=notification_service)


@pytest.fixture
def refund_request_service(
    db: Session,
    clock: FixedClock,
    notification_service: NotificationService,
    payment_service: PaymentService,
) -> RefundRequestService:
    return RefundRequestService(
        db,
        clock=clock,
        notification_service=notification_service,
        payment_service=payment_service,
    )


@pytest.fixture
def make_appointment(db: Session):
    """Insert an appointment row directly, bypassing booking rules."""

    def _make(
        *,
        buyer_id: str = BUYER_ID,
        listing_id: str = LISTING_ID,
        seller_id: str = SELLER_ID,
        on: date = TOMORROW,
        at: time = TEN_AM,
        status: AppointmentStatus = AppointmentStatus.PENDING,
        reinitiations: int = 0,
    ) -> Appointment:
        appointment = Appointment(
            buyer_id=buyer_id,
            listing_id=listing_id,
            seller_id=seller_id,
            booked_by=buyer_id,
            date=on,
            time=at,
            purpose="buy",
            status=status.value,
            buyer_reinitiation_count=reinitiations,
        )
        db.add(appointment)
        db.commit()
        return appointment

    return _make


@pytest.fixture
def make_payment(db: Session, make_appointment):
    """Insert a payment (and its appointment) directly."""

    def _make(
        *,
        amount: str = "1000.00",
        status: PaymentStatus = PaymentStatus.COMPLETED,
        refunded: str = "0",
        appointment: Appointment | None = None,
    ) -> Payment:
        owner = appointment or make_appointment(status=AppointmentStatus.ACCEPTED)
        payment = Payment(
            appointment_id=owner.id,
            amount=Decimal(amount),
            currency="INR",
            gateway="razorpay",
            status=status.value,
            refund_amount=Decimal(refunded),
        )
        db.add(payment)
        db.commit()
        return payment

    return _make


def auth_headers(user_id: str, role: str = "user") -> dict[str, str]:
    token = create_access_token({"sub": user_id, "role": role}, expires_delta=timedelta(minutes=30))
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def client(
    session_factory: sessionmaker,
    clock: FixedClock,
    listing_directory: StaticListingDirectory,
    dispatcher: RecordingDispatcher,
) -> Iterator[TestClient]:
    from app.api.dependencies.database import get_db
    from app.api.dependencies.services import get_listing_directory_dep
    from app.main import app
    from app.notifications import get_notification_dispatcher

    def _override_db() -> Iterator[Session]:
        session = session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    app.dependency_overrides[get_db] = _override_db
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_listing_directory_dep] = lambda: listing_directory
    app.dependency_overrides[get_notification_dispatcher] = lambda: dispatcher

    test_client = TestClient(app, raise_server_exceptions=False)
    try:
        yield test_client
    finally:
        app.dependency_overrides.clear()
