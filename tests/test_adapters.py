"""Provider adapters against faked provider APIs."""
import hashlib
import hmac
import json

import httpx
import pytest

from app.models.payment.gateway_config import GatewayProvider
from app.services.payment.errors import GatewayError, GatewayTimeout, MissingCardDetails, ValidationError
from app.services.payment.gateways.base import (
    BuyerIdentity,
    DiscountMetadata,
    GatewayCredentials,
    HppFlow,
    InitRequest,
)
from app.services.payment.gateways.factory import PaymentGatewayFactory
from app.services.payment.gateways.paypal import PaypalGateway
from app.services.payment.gateways.paystack import PaystackGateway
from app.services.payment.gateways.powertranz import PowertranzGateway, hpp_signature, select_powertranz_flow
from app.services.payment.gateways.razorpay import RazorpayGateway
from app.services.payment.gateways.stripe_gateway import StripeGateway


def credentials(provider, public_key="pub_key_value", secret_key="secret_key_value"):
    return GatewayCredentials(provider=provider, public_key=public_key, secret_key=secret_key)


def init_request(provider, buyer=None, flow=None, currency="USD"):
    return InitRequest(
        credentials=credentials(provider),
        amount=19.99,
        currency=currency,
        package_id="pkg-10",
        order_id="ORD-1",
        buyer=buyer or BuyerIdentity(user_id="user-1", email="a@example.com"),
        quantity=2,
        discounts=DiscountMetadata(promo_code="HALF", promo_type="voucher"),
        flow=flow,
    )


def test_factory_builds_adapter_per_provider():
    for provider, cls in (
        (GatewayProvider.STRIPE, StripeGateway),
        (GatewayProvider.RAZORPAY, RazorpayGateway),
        (GatewayProvider.PAYPAL, PaypalGateway),
        (GatewayProvider.PAYSTACK, PaystackGateway),
        (GatewayProvider.POWERTRANZ, PowertranzGateway),
    ):
        assert isinstance(PaymentGatewayFactory.get_gateway(credentials(provider)), cls)


def test_registered_adapter_replaces_default(monkeypatch):
    class SandboxPaystack(PaystackGateway):
        pass

    monkeypatch.setattr(PaymentGatewayFactory, "_gateways", dict(PaymentGatewayFactory._gateways))
    PaymentGatewayFactory.register_gateway("paystack", SandboxPaystack)

    adapter = PaymentGatewayFactory.get_gateway(credentials(GatewayProvider.PAYSTACK))
    assert isinstance(adapter, SandboxPaystack)


def test_missing_secret_key_is_a_gateway_error():
    with pytest.raises(GatewayError):
        PaymentGatewayFactory.get_gateway(GatewayCredentials(provider=GatewayProvider.PAYSTACK))


@pytest.mark.anyio
async def test_razorpay_init_sends_notes(provider, http_client):
    provider.on("POST", "/v1/orders", {"id": "order_rzp_1", "amount": 1999, "currency": "INR"})
    gateway = RazorpayGateway(credentials(GatewayProvider.RAZORPAY), client=http_client)

    result = await gateway.init(init_request(GatewayProvider.RAZORPAY, currency="INR"))

    body = provider.json_body()
    assert body["amount"] == 1999
    assert body["receipt"] == "ORD-1"
    assert body["notes"]["orderId"] == "ORD-1"
    assert body["notes"]["promoCode"] == "HALF"
    assert result.payment_fields() == {"order_id": "order_rzp_1", "public_key": "pub_key_value", "amount": 1999}


@pytest.mark.anyio
async def test_razorpay_verify_checks_signature(provider, http_client):
    provider.on("GET", "/v1/orders/order_rzp_1", {
        "id": "order_rzp_1",
        "amount": 1999,
        "currency": "INR",
        "notes": {"orderId": "ORD-1", "type": "package_purchase"},
    })
    gateway = RazorpayGateway(credentials(GatewayProvider.RAZORPAY), client=http_client)
    signature = hmac.new(b"secret_key_value", b"order_rzp_1|pay_1", hashlib.sha256).hexdigest()

    ok = await gateway.verify({
        "razorpay_order_id": "order_rzp_1",
        "razorpay_payment_id": "pay_1",
        "razorpay_signature": signature,
    })
    forged = await gateway.verify({
        "razorpay_order_id": "order_rzp_1",
        "razorpay_payment_id": "pay_1",
        "razorpay_signature": "0" * 64,
    })

    assert ok.success is True
    assert ok.order_id == "ORD-1"
    assert ok.transaction_id == "pay_1"
    assert forged.success is False
    assert len(provider.requests) == 1


@pytest.mark.anyio
async def test_paypal_init_and_verify(provider, http_client):
    captured = {}

    def create_order(request):
        captured.update(json.loads(request.content))
        return httpx.Response(201, json={"id": "PP-1", "status": "CREATED"})

    provider.on("POST", "/v1/oauth2/token", {"access_token": "A21"})
    provider.on("POST", "/v2/checkout/orders", create_order)
    gateway = PaypalGateway(credentials(GatewayProvider.PAYPAL), client=http_client)

    result = await gateway.init(init_request(GatewayProvider.PAYPAL))

    unit = captured["purchase_units"][0]
    assert result.payment_fields() == {"order_id": "PP-1"}
    assert unit["amount"] == {"currency_code": "USD", "value": "19.99"}
    assert json.loads(unit["custom_id"])["orderId"] == "ORD-1"

    provider.on("GET", "/v2/checkout/orders/PP-1", {
        "id": "PP-1",
        "status": "COMPLETED",
        "purchase_units": [{"custom_id": unit["custom_id"], "amount": {"value": "19.99", "currency_code": "USD"}}],
    })

    verified = await gateway.verify({"orderId": "PP-1"})

    assert verified.success is True
    assert verified.order_id == "ORD-1"
    assert verified.amount == 19.99


@pytest.mark.anyio
async def test_paypal_not_completed_is_not_success(provider, http_client):
    provider.on("POST", "/v1/oauth2/token", {"access_token": "A21"})
    provider.on("GET", "/v2/checkout/orders/PP-2", {"id": "PP-2", "status": "APPROVED"})
    gateway = PaypalGateway(credentials(GatewayProvider.PAYPAL), client=http_client)

    verified = await gateway.verify({"orderId": "PP-2"})

    assert verified.success is False
    assert "APPROVED" in verified.message


@pytest.mark.anyio
async def test_paystack_init_and_verify(provider, http_client):
    provider.on("POST", "/transaction/initialize", {
        "status": True,
        "data": {"reference": "ref_1", "authorization_url": "https://checkout.paystack.com/ref_1"},
    })
    provider.on("GET", "/transaction/verify/ref_1", {
        "status": True,
        "data": {"id": 555, "status": "success", "amount": 1999, "currency": "NGN", "metadata": {"orderId": "ORD-1"}},
    })
    gateway = PaystackGateway(credentials(GatewayProvider.PAYSTACK), client=http_client)

    result = await gateway.init(init_request(GatewayProvider.PAYSTACK, currency="NGN"))
    verified = await gateway.verify({"reference": "ref_1"})

    assert provider.json_body(0)["metadata"]["orderId"] == "ORD-1"
    assert result.payment_fields()["redirect_url"] == "https://checkout.paystack.com/ref_1"
    assert verified.success is True
    assert verified.transaction_id == "555"
    assert verified.order_id == "ORD-1"


@pytest.mark.anyio
async def test_provider_errors_never_leak_secrets(provider, http_client):
    provider.on("POST", "/transaction/initialize", {"message": "Invalid key: secret_key_value"}, status_code=401)
    gateway = PaystackGateway(credentials(GatewayProvider.PAYSTACK), client=http_client)

    with pytest.raises(GatewayError) as exc:
        await gateway.init(init_request(GatewayProvider.PAYSTACK))

    assert exc.value.status_code == 500
    assert "secret_key_value" not in exc.value.message
    assert exc.value.message.startswith("paystack:")


@pytest.mark.anyio
async def test_provider_timeout(provider, http_client):
    def slow(request):
        raise httpx.ReadTimeout("timed out", request=request)

    provider.on("POST", "/transaction/initialize", slow)
    gateway = PaystackGateway(credentials(GatewayProvider.PAYSTACK), client=http_client)

    with pytest.raises(GatewayTimeout) as exc:
        await gateway.init(init_request(GatewayProvider.PAYSTACK))

    assert exc.value.status_code == 504


@pytest.mark.anyio
async def test_paystack_requires_email(http_client):
    gateway = PaystackGateway(credentials(GatewayProvider.PAYSTACK), client=http_client)

    with pytest.raises(ValidationError):
        await gateway.init(init_request(GatewayProvider.PAYSTACK, buyer=BuyerIdentity(user_id="user-1")))


@pytest.mark.anyio
async def test_stripe_guest_intent(stripe_fake):
    buyer = BuyerIdentity(email="g@example.com", guest_access_token="guest-token")
    gateway = StripeGateway(credentials(GatewayProvider.STRIPE))

    result = await gateway.init(init_request(GatewayProvider.STRIPE, buyer=buyer))

    names = [name for name, _ in stripe_fake.calls]
    assert names == ["Customer.create", "PaymentIntent.create"]
    customer_kwargs = stripe_fake.calls[0][1]
    intent_kwargs = stripe_fake.calls[1][1]
    assert customer_kwargs["metadata"]["guestAccessToken"] == "guest-token"
    assert intent_kwargs["amount"] == 1999
    assert intent_kwargs["currency"] == "usd"
    assert intent_kwargs["api_key"] == "secret_key_value"
    assert intent_kwargs["metadata"]["type"] == "guest_purchase"
    assert result.payment_fields()["guest_access_token"] == "guest-token"


@pytest.mark.anyio
async def test_stripe_verify_requires_succeeded_intent(stripe_fake):
    gateway = StripeGateway(credentials(GatewayProvider.STRIPE))
    result = await gateway.init(init_request(GatewayProvider.STRIPE))

    pending = await gateway.verify({"paymentIntentId": result.payment_intent_id})

    intent = stripe_fake.intents[result.payment_intent_id]
    intent.status = "succeeded"
    intent.amount_received = 1999
    paid = await gateway.verify({"paymentIntentId": result.payment_intent_id})

    assert pending.success is False
    assert paid.success is True
    assert paid.order_id == "ORD-1"
    assert paid.amount == 19.99


def test_spi_without_card_number_is_rejected():
    with pytest.raises(MissingCardDetails) as exc:
        select_powertranz_flow("spi", {"cvv": "123", "expiry": "1228"})

    assert exc.value.missing == ["pan"]
    assert exc.value.status_code == 400


@pytest.mark.parametrize("card", [
    {"pan": "4111", "cvv": "123", "expiry": "1228"},
    {"pan": "4111111111111111", "cvv": "12", "expiry": "1228"},
    {"pan": "4111111111111111", "cvv": "123", "expiry": "1328"},
])
def test_spi_card_validation(card):
    with pytest.raises(ValidationError):
        select_powertranz_flow("spi", card)


@pytest.mark.anyio
async def test_powertranz_spi_sale(provider, http_client):
    provider.on("POST", "/api/spi/Sale", {
        "IsoResponseCode": "SP4",
        "RedirectData": "<form>challenge</form>",
        "SpiToken": "spi-token-1",
    })
    flow = select_powertranz_flow(None, {"pan": "4111 1111 1111 1111", "cvv": "123", "expiry": "1228"})
    gateway = PowertranzGateway(credentials(GatewayProvider.POWERTRANZ), client=http_client)

    result = await gateway.init(init_request(GatewayProvider.POWERTRANZ, flow=flow))

    request = provider.requests[-1]
    body = provider.json_body()
    assert request.headers["PowerTranz-PowerTranzId"] == "pub_key_value"
    assert body["Source"]["CardPan"] == "4111111111111111"
    assert body["Source"]["CardExpiration"] == "2812"
    assert body["TotalAmount"] == 19.99
    assert body["CurrencyCode"] == "840"
    assert body["ExtendedData"]["MerchantResponseUrl"].endswith("/api/payments/powertranz/3ds-response")
    assert result.payment_fields() == {
        "method": "spi",
        "redirectData": "<form>challenge</form>",
        "spiToken": "spi-token-1",
    }


@pytest.mark.anyio
async def test_powertranz_hpp_session(provider, http_client):
    provider.on("POST", "/api/spi/Sale", {"RedirectUrl": "https://staging.ptranz.com/hpp/abc", "HppToken": "hpp-1"})
    gateway = PowertranzGateway(credentials(GatewayProvider.POWERTRANZ), client=http_client)

    result = await gateway.init(init_request(GatewayProvider.POWERTRANZ, flow=HppFlow()))

    hosted = provider.json_body()["ExtendedData"]["HostedPage"]
    assert hosted["ReturnUrl"].endswith("/hpp-callback")
    assert hosted["NotificationUrl"].endswith("/hpp-notify")
    assert result.payment_fields() == {
        "method": "hpp",
        "redirectUrl": "https://staging.ptranz.com/hpp/abc",
        "hppToken": "hpp-1",
    }


@pytest.mark.anyio
async def test_powertranz_confirm(provider, http_client):
    def payment(request):
        assert json.loads(request.content) == "spi-token-1"
        return httpx.Response(200, json={
            "Approved": True,
            "TransactionIdentifier": "txn-1",
            "OrderIdentifier": "ORD-1",
            "TotalAmount": 19.99,
        })

    provider.on("POST", "/api/spi/Payment", payment)
    gateway = PowertranzGateway(credentials(GatewayProvider.POWERTRANZ), client=http_client)

    verified = await gateway.verify({"spiToken": "spi-token-1"})

    assert verified.success is True
    assert verified.transaction_id == "txn-1"
    assert verified.order_id == "ORD-1"


def test_powertranz_hpp_signature():
    gateway = PowertranzGateway(credentials(GatewayProvider.POWERTRANZ, public_key="88800001", secret_key="pt_pw"))
    notification = {
        "TotalAmount": 20.0,
        "Approved": True,
        "OrderIdentifier": "ORD-1",
        "TransactionIdentifier": "txn-1",
        "IsoResponseCode": "00",
    }
    canonical = '{"TransactionIdentifier":"txn-1","OrderIdentifier":"ORD-1","Approved":true,"TotalAmount":20.0}'
    expected = hmac.new(b"pt_pw", canonical.encode(), hashlib.sha256).hexdigest()

    assert hpp_signature(notification, "pt_pw") == expected
    assert gateway.verify_hpp_signature(notification, expected.upper()) is True
    assert gateway.verify_hpp_signature({**notification, "OrderIdentifier": "ORD-2"}, expected) is False
    assert gateway.verify_hpp_signature(notification, None) is False
