import os
import tempfile

# Settings are read at import time, so the environment must be in place first
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["APP_ENV"] = "test"
os.environ["PORTAL_JWT_SECRET"] = "test-portal-secret-0123456789abcdef0123"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["LOG_FILE"] = os.path.join(tempfile.gettempdir(), "tutorhub-tests.log")
os.environ["STRIPE_MICRO_PRICE_ID"] = "price_micro"
os.environ["STRIPE_STARTER_PRICE_ID"] = "price_starter"
os.environ["STRIPE_STANDARD_PRICE_ID"] = "price_standard"
os.environ["STRIPE_PREMIUM_PRICE_ID"] = "price_premium"
os.environ.pop("CRON_SECRET", None)

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from tutorhub.database import Base, get_db
from tutorhub.exceptions import PaymentProviderError
from tutorhub.main import app
from tutorhub.models import Parent, ParentStudent, Student, Teacher, TutorialCenter, User
from tutorhub.services.auth_provider import AuthResolver, get_auth_resolver
from tutorhub.services.delivery import SendResult
from tutorhub.services.notification_service import NotificationSenders, get_notification_senders
from tutorhub.services.stripe_service import get_stripe_client
from tutorhub.utils.helpers import new_uuid, utcnow


class Clock:
    """Settable clock for services that take `clock=`"""

    def __init__(self, now=None):
        self.now = now or utcnow()

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


class FakeSmsSender:
    provider = "fake-sms"

    def __init__(self):
        self.sent = []
        # phone -> SendResult to return, or Exception to raise
        self.outcomes = {}

    def send(self, to, message):
        outcome = self.outcomes.get(to)
        if isinstance(outcome, Exception):
            raise outcome
        if outcome is not None:
            return outcome
        self.sent.append((to, message))
        return SendResult.ok(f"sms-{len(self.sent)}")


class FakeEmailSender:
    provider = "fake-email"

    def __init__(self):
        self.sent = []
        self.outcomes = {}

    def send(self, to, subject, html_body):
        outcome = self.outcomes.get(to)
        if isinstance(outcome, Exception):
            raise outcome
        if outcome is not None:
            return outcome
        self.sent.append((to, subject, html_body))
        return SendResult.ok(f"email-{len(self.sent)}")


class FakeAuthProvider:
    """access token -> provider user dict"""

    def __init__(self):
        self.users = {}
        self.calls = 0
        self.error = None

    def get_user(self, access_token):
        self.calls += 1
        if self.error:
            raise self.error
        return self.users.get(access_token)


class FakeStripeClient:

    def __init__(self):
        self.customers = []
        self.subscriptions = {"active": [], "all": []}
        self.products = {}
        self.subscription_detail = {}
        self.updates = []

    def list_customers(self, email, limit=1):
        return self.customers[:limit]

    def list_subscriptions(self, customer_id, status="active", limit=10):
        return self.subscriptions.get(status, [])[:limit]

    def retrieve_subscription(self, subscription_id):
        return self.subscription_detail

    def retrieve_product(self, product_id):
        if product_id not in self.products:
            raise PaymentProviderError(f"No such product: {product_id}")
        return self.products[product_id]

    def update_subscription_price(self, subscription_id, item_id, price_id):
        self.updates.append((subscription_id, item_id, price_id))
        return {"id": subscription_id}


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def sms_sender():
    return FakeSmsSender()


@pytest.fixture
def email_sender():
    return FakeEmailSender()


@pytest.fixture
def senders(sms_sender, email_sender):
    return NotificationSenders(sms=sms_sender, email=email_sender)


@pytest.fixture
def auth_provider():
    return FakeAuthProvider()


@pytest.fixture
def stripe_client():
    return FakeStripeClient()


@pytest.fixture
def center(db):
    center = TutorialCenter(
        name="Bright Minds Academy",
        email="admin@brightminds.co.za",
        subscription_tier="standard",
        subscription_status="active"
    )
    db.add(center)
    db.commit()
    return center


@pytest.fixture
def other_center(db):
    center = TutorialCenter(name="Other Centre", subscription_tier="starter")
    db.add(center)
    db.commit()
    return center


def make_user(db, center_id, role="center_admin", is_active=True, email=None):
    user = User(
        id=new_uuid(),
        email=email or f"{role}-{new_uuid()[:8]}@example.com",
        full_name=role.replace("_", " ").title(),
        role=role,
        center_id=center_id,
        is_active=is_active
    )
    db.add(user)
    db.commit()
    return user


def make_student(db, center_id, status="active", phone="0821234567", email="thandi@example.com", full_name="Thandi Nkosi"):
    student = Student(
        center_id=center_id,
        full_name=full_name,
        email=email,
        phone=phone,
        student_number="BM-001",
        grade="10",
        status=status
    )
    db.add(student)
    db.commit()
    return student


@pytest.fixture
def admin_user(db, center):
    return make_user(db, center.id, role="center_admin")


@pytest.fixture
def staff_user(db, center):
    return make_user(db, center.id, role="center_staff")


@pytest.fixture
def super_admin(db):
    return make_user(db, None, role="super_admin")


@pytest.fixture
def student(db, center):
    return make_student(db, center.id)


@pytest.fixture
def teacher(db, center):
    teacher = Teacher(
        center_id=center.id,
        full_name="Sipho Dlamini",
        email="sipho@example.com",
        phone="0731234567",
        specialization="Mathematics",
        status="active"
    )
    db.add(teacher)
    db.commit()
    return teacher


@pytest.fixture
def parent(db, center, student):
    parent = Parent(
        center_id=center.id,
        full_name="Lerato Nkosi",
        email="lerato@example.com",
        phone="0841234567",
        notification_attendance="immediate",
        notification_grades=True,
        notification_sms=True,
        notification_email=False
    )
    db.add(parent)
    db.flush()
    db.add(ParentStudent(parent_id=parent.id, student_id=student.id, verified_at=utcnow()))
    db.commit()
    return parent


@pytest.fixture
def client(db, senders, auth_provider, stripe_client):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notification_senders] = lambda: senders
    app.dependency_overrides[get_auth_resolver] = lambda: AuthResolver(auth_provider, timeout=2)
    app.dependency_overrides[get_stripe_client] = lambda: stripe_client
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def login(auth_provider):
    """Register a user with the fake provider and return request headers"""
    def _login(user):
        token = f"token-{user.id}"
        auth_provider.users[token] = {"id": user.id, "email": user.email}
        return {"Authorization": f"Bearer {token}"}
    return _login
