import mongomock
import pytest
from fastapi.testclient import TestClient

from access import otp_send_limiter, otp_verify_limiter
from config import Settings, get_settings
from database import create_document, get_db
from mailer import get_mailer
from main import app
from schemas import Product


class RecordingMailer:
    def __init__(self):
        self.sent = []
        self.fail = False

    def send_code(self, email, name, code, expires_minutes):
        self.sent.append({"email": email, "name": name, "code": code, "expires": expires_minutes})
        if self.fail:
            raise ConnectionError("SMTP server unavailable")

    def last_code(self, email):
        for message in reversed(self.sent):
            if message["email"] == email.lower():
                return message["code"]
        return None


@pytest.fixture
def db():
    return mongomock.MongoClient().db


@pytest.fixture
def settings():
    return Settings(jwt_secret="test-secret", otp_hash_rounds=4)


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def client(db, settings, mailer):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_mailer] = lambda: mailer
    otp_send_limiter.reset()
    otp_verify_limiter.reset()
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def login(client, mailer, db):
    """Log in through the real OTP flow; returns (headers, user json)."""
    def _login(email, name=None, role="user"):
        body = {"email": email}
        if name:
            body["name"] = name
        assert client.post("/auth/send-otp", json=body).status_code == 200
        if role != "user":
            db["user"].update_one({"email": email.lower()}, {"$set": {"role": role}})
        res = client.post("/auth/verify-otp", json={"email": email, "otp": mailer.last_code(email)})
        assert res.status_code == 200, res.text
        data = res.json()
        return {"Authorization": f"Bearer {data['token']}"}, data["user"]
    return _login


@pytest.fixture
def user_auth(login):
    return login("ann@example.com", "Ann")


@pytest.fixture
def admin_auth(login):
    return login("admin@example.com", "Admin", role="admin")


@pytest.fixture
def make_product(db):
    def _make(name="Farm Fresh Milk", price=55, category="milk", in_stock=True, **extra):
        product = Product(
            name=name,
            category=category,
            description=extra.pop("description", f"{name} from local organic farms"),
            price=price,
            unit=extra.pop("unit", "litre"),
            available_quantities=extra.pop("available_quantities", ["500ml", "1L"]),
            in_stock=in_stock,
            **extra,
        )
        return str(create_document(db, "product", product))
    return _make


@pytest.fixture
def address_payload():
    def _payload(name="Home", **overrides):
        payload = {
            "name": name,
            "street": "12 Green Park Road",
            "city": "Bengaluru",
            "state": "Karnataka",
            "postalCode": "560001",
            "country": "India",
            "coordinates": {"lat": 12.97, "lng": 77.59},
        }
        payload.update(overrides)
        return payload
    return _payload
