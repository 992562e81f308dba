"""Shared fixtures for the payment API tests.

- No MongoDB server: an in-memory collection double implements the small
  subset of the motor API the services use.
- No provider network: adapters get an httpx.AsyncClient backed by
  httpx.MockTransport; Stripe SDK calls are monkeypatched.
- All HTTP tests go through the ASGI app via httpx.ASGITransport.
- AnyIO runs the async tests (@pytest.mark.anyio).
"""
import copy
import json
from types import SimpleNamespace
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest
from httpx import ASGITransport
from pymongo.errors import DuplicateKeyError

from app.main import app
from app.routes.auth.dependencies import get_database
from app.routes.payment.payment_routes import get_payment_service
from app.services.payment.payment_service import PaymentService


def _matches(doc: Dict[str, Any], query: Dict[str, Any]) -> bool:
    for key, expected in query.items():
        actual = doc.get(key)
        if isinstance(expected, dict) and any(k.startswith("$") for k in expected):
            for op, value in expected.items():
                if op == "$ne" and actual == value:
                    return False
                if op == "$in" and actual not in value:
                    return False
        elif actual != expected:
            return False
    return True


class FakeCursor:
    def __init__(self, docs: List[Dict[str, Any]]):
        self.docs = docs

    def sort(self, key, direction: int = 1):
        keys = key if isinstance(key, list) else [(key, direction)]
        for field, order in reversed(keys):
            self.docs.sort(key=lambda d: (d.get(field) is None, d.get(field)), reverse=order == -1)
        return self

    async def to_list(self, length: Optional[int] = None):
        return self.docs[:length] if length else list(self.docs)


class FakeCollection:
    """In-memory stand-in for a motor collection"""

    def __init__(self, unique: Optional[List[str]] = None):
        self.docs: List[Dict[str, Any]] = []
        self.unique = unique or []

    async def find_one(self, query: Optional[Dict[str, Any]] = None):
        for doc in self.docs:
            if _matches(doc, query or {}):
                return copy.deepcopy(doc)
        return None

    def find(self, query: Optional[Dict[str, Any]] = None):
        return FakeCursor([copy.deepcopy(d) for d in self.docs if _matches(d, query or {})])

    async def insert_one(self, doc: Dict[str, Any]):
        if self.unique and any(all(d.get(k) == doc.get(k) for k in self.unique) for d in self.docs):
            raise DuplicateKeyError("duplicate key")
        self.docs.append(copy.deepcopy(doc))
        return SimpleNamespace(inserted_id=len(self.docs))

    async def update_one(self, query: Dict[str, Any], update: Dict[str, Any], upsert: bool = False):
        for doc in self.docs:
            if _matches(doc, query):
                before = copy.deepcopy(doc)
                doc.update(copy.deepcopy(update.get("$set", {})))
                return SimpleNamespace(matched_count=1, modified_count=int(doc != before), upserted_id=None)
        if upsert:
            doc = {k: v for k, v in query.items() if not isinstance(v, dict)}
            doc.update(update.get("$setOnInsert", {}))
            doc.update(update.get("$set", {}))
            self.docs.append(doc)
            return SimpleNamespace(matched_count=0, modified_count=0, upserted_id=len(self.docs))
        return SimpleNamespace(matched_count=0, modified_count=0, upserted_id=None)

    async def count_documents(self, query: Dict[str, Any]):
        return len([d for d in self.docs if _matches(d, query)])


class FakeDatabase:
    def __init__(self):
        self._collections: Dict[str, FakeCollection] = {
            "order_events": FakeCollection(unique=["order_id", "event"]),
        }

    def __getattr__(self, name: str) -> FakeCollection:
        if name.startswith("_"):
            raise AttributeError(name)
        return self._collections.setdefault(name, FakeCollection())

    def __getitem__(self, name: str) -> FakeCollection:
        return getattr(self, name)


GATEWAYS = [
    ("gw_stripe", "stripe", "Card", "pk_test_stripe", "sk_test_stripe_secret", True),
    ("gw_razorpay", "razorpay", "UPI / NetBanking", "rzp_test_key", "rzp_secret_value", True),
    ("gw_paypal", "paypal", "PayPal", "paypal_client_id", "paypal_client_secret", True),
    ("gw_paystack", "paystack", "Paystack", "pk_paystack", "sk_paystack_secret", True),
    ("gw_powertranz", "powertranz", "Credit Card", "88800001", "pt_password_value", True),
    ("gw_paypal_old", "paypal", "PayPal (legacy)", "old_client", "old_secret", False),
]

SUPPORTED = {
    "gw_stripe": ["cur_usd", "cur_eur"],
    "gw_razorpay": ["cur_inr"],
    "gw_paypal": ["cur_usd"],
    "gw_paystack": ["cur_ngn", "cur_usd"],
    "gw_powertranz": ["cur_usd"],
    "gw_paypal_old": ["cur_usd", "cur_eur"],
}


@pytest.fixture
def anyio_backend() -> str:
    """Run async tests on asyncio."""
    return "asyncio"


@pytest.fixture
def db() -> FakeDatabase:
    """Database seeded with currencies, gateways, one package and settings."""
    database = FakeDatabase()

    for code, rate in (("USD", 1.0), ("EUR", 0.5), ("INR", 80.0), ("NGN", 1000.0)):
        database.currencies.docs.append({"currency_id": f"cur_{code.lower()}", "code": code, "conversion_rate": rate})

    for gateway_id, provider, name, public_key, secret_key, enabled in GATEWAYS:
        database.payment_gateways.docs.append({
            "gateway_id": gateway_id,
            "provider": provider,
            "display_name": name,
            "public_key": public_key,
            "secret_key": secret_key,
            "is_enabled": enabled,
            "config": {"mode": "test"},
        })
        for currency_id in SUPPORTED[gateway_id]:
            database.supported_currencies.docs.append({"gateway_id": gateway_id, "currency_id": currency_id})

    database.packages.docs.append({"package_id": "pkg-10", "retail_price": 10.0, "status": "active"})
    database.packages.docs.append({"package_id": "pkg-retired", "retail_price": 5.0, "status": "inactive"})

    database.settings.docs.append({"key": "in_app_purchase_enabled", "value": True})
    database.settings.docs.append({"key": "topup_margin", "value": 40})

    return database


@pytest.fixture
def add_order(db) -> Callable[..., None]:
    """Insert an order row as the storefront does before payment."""
    def _add(order_id: str, status: str = "pending") -> None:
        db.orders.docs.append({"order_id": order_id, "package_id": "pkg-10", "status": status})
    return _add


class ProviderStub:
    """Routes provider HTTP calls to canned responses and records them"""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.routes: Dict[str, Callable[[httpx.Request], httpx.Response]] = {}

    def on(self, method: str, path: str, response: Any, status_code: int = 200):
        if callable(response):
            self.routes[f"{method} {path}"] = response
        else:
            self.routes[f"{method} {path}"] = lambda request: httpx.Response(status_code, json=response)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes.get(f"{request.method} {request.url.path}")
        if handler is None:
            return httpx.Response(404, json={"message": f"no stub for {request.method} {request.url.path}"})
        return handler(request)

    def json_body(self, index: int = -1) -> Dict[str, Any]:
        return json.loads(self.requests[index].content)


@pytest.fixture
def provider() -> ProviderStub:
    return ProviderStub()


@pytest.fixture
async def http_client(provider):
    async with httpx.AsyncClient(transport=httpx.MockTransport(provider)) as client:
        yield client


@pytest.fixture
def payment_service(db, http_client) -> PaymentService:
    return PaymentService(db, client=http_client)


@pytest.fixture
async def api(db, payment_service):
    """ASGI client with the database and provider transport overridden."""
    async def _db():
        return db

    async def _service():
        return payment_service

    app.dependency_overrides[get_database] = _db
    app.dependency_overrides[get_payment_service] = _service
    try:
        async with httpx.AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            yield client
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def stripe_fake(monkeypatch) -> SimpleNamespace:
    """Fake Stripe SDK; .calls records (name, kwargs), .intents holds created intents."""
    import stripe

    calls: List[tuple] = []
    intents: Dict[str, SimpleNamespace] = {}

    def customer_list(**kwargs):
        calls.append(("Customer.list", kwargs))
        return SimpleNamespace(data=[])

    def customer_create(**kwargs):
        calls.append(("Customer.create", kwargs))
        return SimpleNamespace(id="cus_123")

    def intent_create(**kwargs):
        calls.append(("PaymentIntent.create", kwargs))
        intent = SimpleNamespace(
            id=f"pi_{len(intents) + 1}",
            client_secret=f"pi_{len(intents) + 1}_secret",
            status="requires_payment_method",
            metadata=dict(kwargs.get("metadata") or {}),
            amount=kwargs["amount"],
            amount_received=0,
            currency=kwargs["currency"],
        )
        intents[intent.id] = intent
        return intent

    def intent_retrieve(intent_id, **kwargs):
        calls.append(("PaymentIntent.retrieve", {"id": intent_id, **kwargs}))
        return intents[intent_id]

    monkeypatch.setattr(stripe.Customer, "list", customer_list)
    monkeypatch.setattr(stripe.Customer, "create", customer_create)
    monkeypatch.setattr(stripe.PaymentIntent, "create", intent_create)
    monkeypatch.setattr(stripe.PaymentIntent, "retrieve", intent_retrieve)

    return SimpleNamespace(calls=calls, intents=intents)
