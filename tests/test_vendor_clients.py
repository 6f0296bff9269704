import json

import httpx
import pytest

from advisory.core.exceptions import (
    MalformedVendorResponse,
    VendorNotConfigured,
    VendorResponseError,
    VendorTimeout,
    VendorUnavailable,
)
from advisory.services.digio_client import DigioClient, resolve_kyc_status
from advisory.services.razorpay_client import RazorpayClient


def _transport(handler):
    return httpx.MockTransport(handler)


def _razorpay(handler):
    return RazorpayClient("rzp_key", "rzp_secret", base_url="https://api.razorpay.test/v1", transport=_transport(handler))


def _digio(handler):
    return DigioClient(
        "client",
        "secret",
        base_url="https://digio.test",
        redirect_url="https://app.example.com/kyc/callback",
        transport=_transport(handler),
    )


@pytest.mark.anyio
async def test_razorpay_create_order_payload():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "order_1"})

    order = await _razorpay(handler).create_order(amount=9900, currency="INR", receipt="rcpt_1")

    assert order == {"id": "order_1"}
    assert seen["path"] == "/v1/orders"
    assert seen["body"] == {"amount": 9900, "currency": "INR", "receipt": "rcpt_1", "notes": {}}


@pytest.mark.anyio
async def test_razorpay_error_carries_vendor_description():
    def handler(request):
        return httpx.Response(401, json={"error": {"code": "BAD_REQUEST_ERROR", "description": "Authentication failed"}})

    with pytest.raises(VendorResponseError) as excinfo:
        await _razorpay(handler).fetch_payment("pay_1")

    assert excinfo.value.status_code == 401
    assert excinfo.value.message == "Authentication failed"


@pytest.mark.anyio
async def test_razorpay_non_json_body_is_malformed():
    def handler(request):
        return httpx.Response(200, text="<html>gateway</html>")

    with pytest.raises(MalformedVendorResponse):
        await _razorpay(handler).fetch_payment("pay_1")


@pytest.mark.anyio
async def test_razorpay_timeout_and_connection_errors():
    def timeout(request):
        raise httpx.ReadTimeout("slow", request=request)

    def refused(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(VendorTimeout):
        await _razorpay(timeout).fetch_payment("pay_1")
    with pytest.raises(VendorUnavailable):
        await _razorpay(refused).fetch_payment("pay_1")


@pytest.mark.anyio
async def test_razorpay_without_keys():
    with pytest.raises(VendorNotConfigured):
        await RazorpayClient("", "").fetch_payment("pay_1")


@pytest.mark.anyio
async def test_digio_init_reads_nested_response():
    def handler(request):
        return httpx.Response(
            200,
            json={"data": {"request_id": "KID9", "reference_id": "sub_9", "url": "https://digio.test/k/KID9"}},
        )

    session = await _digio(handler).init_kyc("a@b.c", "A", "sub_9")

    assert session.request_id == "KID9"
    assert session.reference_id == "sub_9"
    assert session.url == "https://digio.test/k/KID9"
    assert session.access_token is None


@pytest.mark.anyio
async def test_digio_init_requires_reference_id():
    def handler(request):
        return httpx.Response(200, json={"id": "KID9", "url": "https://digio.test/k/KID9"})

    with pytest.raises(MalformedVendorResponse):
        await _digio(handler).init_kyc("a@b.c", "A", "sub_9")


def test_resolve_kyc_status_ignores_non_dict_actions():
    assert resolve_kyc_status({"status": "approval_pending", "actions": ["success"]}) == "approval_pending"
    assert resolve_kyc_status({"status": "approved"}) == "verified"
