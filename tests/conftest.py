import os
# Ensure the app factory picks the Testing config & SQLite memory DB
os.environ.setdefault("APP_ENV", "testing")
os.environ.setdefault("TEST_DATABASE_URL", "sqlite:///:memory:")

import hashlib
import hmac
import json
import time
import types

import pytest
from prdbuilder import create_app
from prdbuilder.extensions import db
from prdbuilder.models import User, Workspace, WorkspaceMember, ROLE_OWNER

WEBHOOK_SECRET = "whsec_test_x"
PRICES = {
    "STRIPE_PRICE_PRO_MONTHLY": "price_pro_month",
    "STRIPE_PRICE_PRO_YEARLY": "price_pro_year",
    "STRIPE_PRICE_BUSINESS_MONTHLY": "price_business_month",
    "STRIPE_PRICE_BUSINESS_YEARLY": "price_business_year",
}

@pytest.fixture(scope="session")
def app():
    app = create_app()
    app.config.update(
        TESTING=True,
        SQLALCHEMY_DATABASE_URI="sqlite:///:memory:",
        MAIL_SUPPRESS_SEND=True,
        APP_BASE_URL="http://example.test",
        WTF_CSRF_ENABLED=False,
        STRIPE_SECRET_KEY="sk_test_x",
        STRIPE_WEBHOOK_SECRET=WEBHOOK_SECRET,
        **PRICES,
    )
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.drop_all()

@pytest.fixture()
def client(app):
    return app.test_client()

@pytest.fixture(autouse=True)
def _db_clean(app):
    # Clean BEFORE each test
    with app.app_context():
        db.session.rollback()
        for tbl in reversed(db.metadata.sorted_tables):
            db.session.execute(tbl.delete())
        db.session.commit()
    yield
    # And AFTER each test (keeps state hermetic even if a test fails mid-transaction)
    with app.app_context():
        db.session.rollback()
        for tbl in reversed(db.metadata.sorted_tables):
            db.session.execute(tbl.delete())
        db.session.commit()


# ----- Stripe double -----

class FakeStripe:
    """
    Stands in for StripeClient. Records every call as (resource.method, params)
    and serves subscriptions from `self.subscriptions` (id -> dict).
    """

    def __init__(self):
        self.calls = []
        self.subscriptions = {}
        self.prices = []
        self.products = []
        self.errors = {}        # "resource.method" -> exception to raise
        self.on_customer_create = None
        self._customer_seq = 0
        self._session_seq = 0

    def _record(self, name, params=None):
        self.calls.append((name, params))
        err = self.errors.get(name)
        if err is not None:
            raise err

    def called(self, name):
        return [p for n, p in self.calls if n == name]

    # resource.method implementations
    def _customers_create(self, params=None, options=None):
        self._record("customers.create", params)
        self._customer_seq += 1
        cid = f"cus_test_{self._customer_seq}"
        if self.on_customer_create is not None:
            hook, self.on_customer_create = self.on_customer_create, None
            hook()
        return {"id": cid, "email": (params or {}).get("email")}

    def _checkout_create(self, params=None, options=None):
        self._record("checkout.sessions.create", params)
        self._session_seq += 1
        sid = f"cs_test_{self._session_seq}"
        return {"id": sid, "url": f"https://checkout.stripe.test/{sid}"}

    def _portal_create(self, params=None, options=None):
        self._record("billing_portal.sessions.create", params)
        return {"id": "bps_test", "url": "https://billing.stripe.test/session"}

    def _subscriptions_retrieve(self, sub_id, params=None, options=None):
        self._record("subscriptions.retrieve", {"id": sub_id})
        return self.subscriptions[sub_id]

    def _subscriptions_list(self, params=None, options=None):
        self._record("subscriptions.list", params)
        customer = (params or {}).get("customer")
        data = [s for s in self.subscriptions.values() if s.get("customer") == customer]
        return {"data": data[: (params or {}).get("limit", 10)]}

    def _prices_list(self, params=None, options=None):
        self._record("prices.list", params)
        return {"data": list(self.prices)}

    def _products_list(self, params=None, options=None):
        self._record("products.list", params)
        return {"data": list(self.products)}

    def client(self, api_key):
        ns = types.SimpleNamespace
        return ns(
            customers=ns(create=self._customers_create),
            checkout=ns(sessions=ns(create=self._checkout_create)),
            billing_portal=ns(sessions=ns(create=self._portal_create)),
            subscriptions=ns(retrieve=self._subscriptions_retrieve, list=self._subscriptions_list),
            prices=ns(list=self._prices_list),
            products=ns(list=self._products_list),
        )

@pytest.fixture()
def stripe_fake(monkeypatch):
    fake = FakeStripe()
    monkeypatch.setattr("prdbuilder.services.billing.StripeClient", fake.client)
    return fake


def stripe_subscription(sub_id, customer, *, status="active", price="price_pro_month", period_end=None, metadata=None):
    """Minimal Stripe subscription object as the API returns it."""
    return {
        "id": sub_id,
        "object": "subscription",
        "customer": customer,
        "status": status,
        "metadata": metadata or {},
        "current_period_end": period_end or int(time.time()) + 30 * 24 * 3600,
        "items": {"data": [{"price": {"id": price, "product": "prod_test"}, "quantity": 1}]},
    }


# ----- Helpers -----

@pytest.fixture()
def make_user(app):
    """Create a user (and by default an owned workspace); returns (user_id, workspace_id)."""
    def _make(email="owner@example.com", *, with_workspace=True, is_app_admin=False, workspace_name=None):
        with app.app_context():
            u = User(email=email, is_app_admin=is_app_admin)
            db.session.add(u)
            db.session.flush()
            ws_id = None
            if with_workspace:
                ws = Workspace(name=workspace_name or f"{email}'s Workspace", created_by=u.id)
                db.session.add(ws)
                db.session.flush()
                db.session.add(WorkspaceMember(workspace_id=ws.id, user_id=u.id, role=ROLE_OWNER))
                ws_id = ws.id
            db.session.commit()
            return u.id, ws_id
    return _make

@pytest.fixture()
def login(client):
    def _login(user_id):
        # Simulate Flask-Login session
        with client.session_transaction() as sess:
            sess["_user_id"] = str(user_id)
            sess["_fresh"] = True
    return _login


def sign(payload: str, secret: str = WEBHOOK_SECRET, timestamp=None) -> str:
    """Stripe-Signature header for `payload` (same scheme Stripe uses)."""
    ts = int(timestamp or time.time())
    mac = hmac.new(secret.encode("utf-8"), f"{ts}.{payload}".encode("utf-8"), hashlib.sha256).hexdigest()
    return f"t={ts},v1={mac}"

@pytest.fixture()
def send_event(client):
    """POST a signed event to the webhook endpoint."""
    seq = {"n": 0}

    def _send(event_type, obj, *, event_id=None, secret=WEBHOOK_SECRET):
        seq["n"] += 1
        event = {
            "id": event_id or f"evt_test_{seq['n']}",
            "object": "event",
            "type": event_type,
            "data": {"object": obj},
        }
        body = json.dumps(event)
        return client.post(
            "/api/stripe/webhook",
            data=body,
            headers={"Stripe-Signature": sign(body, secret), "Content-Type": "application/json"},
        )
    return _send
