"""
Shared fixtures: a file-backed SQLite database per test (threads need a
real file), a doctor identity, and fakes for the QR provider and notifier.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET", "test-secret")

from decimal import Decimal

import pytest
from sqlalchemy.orm import sessionmaker

import app.models  # noqa: F401  registers every table on Base.metadata
from app.db.base import Base
from app.db.session import make_engine
from app.models.pharmacy_order import PharmacyOrder
from app.schemas.auth import DoctorContext
from app.schemas.pharmacy_order import OrderCreate
from app.services.notifications import Notifier
from app.services.payment_qr import QRCodeProvider
from app.services.pharmacy_inventory import add_medicine
from app.services.pharmacy_orders import create_order
from app.utils.jwt import create_access_token


class FakeQRProvider(QRCodeProvider):

    def __init__(self, qr="upi://pay?pa=clinic@upi&pn=Clinic", error=None):
        self.qr = qr
        self.error = error
        self.calls = []

    def get_qr_code(self, clinic_address_id, doctor_id):
        self.calls.append((clinic_address_id, doctor_id))
        if self.error is not None:
            raise self.error
        return self.qr


class RecordingNotifier(Notifier):

    def __init__(self):
        self.events = []

    def notify(self, event, doctor_id, payload):
        self.events.append((event, doctor_id, payload))


@pytest.fixture
def engine(tmp_path):
    eng = make_engine(f"sqlite:///{tmp_path / 'pharmacy.db'}")
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine,
                        autocommit=False,
                        autoflush=False,
                        expire_on_commit=False,
                        future=True)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def doctor():
    return DoctorContext(doctor_id="doc-1", user_id="doc-1", name="Dr. Meena Rao")


@pytest.fixture
def other_doctor():
    return DoctorContext(doctor_id="doc-2", user_id="doc-2", name="Dr. Arjun")


@pytest.fixture
def fake_qr():
    return FakeQRProvider()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def token():
    return create_access_token(user_id="doc-1", name="Dr. Meena Rao")


@pytest.fixture
def auth_headers(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def paracetamol(db, doctor):
    return add_medicine(db,
                        doctor,
                        name="Paracetamol",
                        dosage="Tablet",
                        price=Decimal("10"),
                        quantity=100,
                        cgst=Decimal("6"),
                        gst=Decimal("12"))


@pytest.fixture
def make_order(db, doctor):
    """Build an order; lines are (med_name, quantity) or dicts."""

    def _make(lines, *, clinic_address_id="addr-1", patient_id="pat-1", who=None):
        payload = OrderCreate(
            source="PRESCRIPTION",
            prescription_id="rx-1",
            patient_id=patient_id,
            patient_name="Lakshmi",
            patient_mobile="9876543210",
            clinic_address_id=clinic_address_id,
            pharmacy_name="Sunrise Clinic Pharmacy",
            pharmacy_address="12 MG Road, Coimbatore",
            pharmacy_gst="33ABCDE1234F1Z5",
            lines=[l if isinstance(l, dict) else {"med_name": l[0], "quantity": l[1]} for l in lines],
        )
        return create_order(db, who or doctor, payload)

    return _make


@pytest.fixture
def priced_order(db, paracetamol, make_order):
    """Paracetamol x2 (catalog, 10.00) + Cough Syrup x1 (not in catalog)."""
    return make_order([("Paracetamol", 2), ("Cough Syrup", 1)])


def line_named(order: PharmacyOrder, name: str):
    return next(l for l in order.lines if l.med_name == name)
