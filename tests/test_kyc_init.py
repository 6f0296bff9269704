import json

import httpx

from advisory.models.subscription import KycStatus, Subscription
from advisory.services.subscriptions import get_subscription, mark_kyc_initiated

INIT_PATH = "/client/kyc/v2/request/with_template"


def _digio_response(reference_id):
    return {
        "id": "KID260101120000000ABCDEFGHIJKLMNO",
        "created_at": "2026-01-01 12:00:00",
        "status": "requested",
        "customer_identifier": "user1@example.com",
        "reference_id": reference_id,
        "url": f"https://digio.test/#/gateway/login/KID260101?token={reference_id}",
        "access_token": {"id": "GWT260101120000ABCDEF", "valid_till": "2026-01-11 12:00:00"},
    }


def _init_body(reference_id, **overrides):
    body = {
        "customer_identifier": "user1@example.com",
        "customer_name": "Asha Rao",
        "reference_id": reference_id,
    }
    body.update(overrides)
    return body


def test_init_kyc_marks_subscription_initiated(client, digio_api, db, make_subscription):
    subscription = make_subscription()
    digio_api.on("POST", INIT_PATH, json=_digio_response(subscription.id))

    response = client.post("/api/kyc/init", json=_init_body(subscription.id, customer_name="  Asha Rao "))

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["message"] == "KYC initiated successfully"
    assert body["data"] == {
        "kycUrl": _digio_response(subscription.id)["url"],
        "referenceId": subscription.id,
        "requestId": "KID260101120000000ABCDEFGHIJKLMNO",
        "accessToken": "GWT260101120000ABCDEF",
    }

    sent = json.loads(digio_api.requests[0].content)
    assert sent["customer_name"] == "Asha Rao"
    assert sent["reference_id"] == subscription.id
    assert sent["template_name"] == "DIGILOKER INTEGRATION"
    assert sent["notify_customer"] is True
    assert sent["generate_access_token"] is True
    assert sent["request_details"] == {}
    assert sent["redirect_url"] == "https://app.example.com/kyc/callback"
    assert digio_api.requests[0].headers["authorization"].startswith("Basic ")

    db.expire_all()
    stored = db.get(Subscription, subscription.id)
    assert stored.kyc_status == KycStatus.INITIATED
    assert stored.kyc_reference_id == subscription.id
    assert stored.kyc_request_id == "KID260101120000000ABCDEFGHIJKLMNO"
    assert stored.kyc_initiated_at is not None
    assert stored.kyc_completed_at is None


def test_init_kyc_absent_fields(client, digio_api):
    response = client.post("/api/kyc/init", json={"customer_name": "Asha Rao"})

    assert response.status_code == 400
    body = response.json()
    assert body["message"] == "Missing required fields: customer_identifier, reference_id"
    assert body["missingFields"] == ["customer_identifier", "reference_id"]
    assert "blankFields" not in body
    assert digio_api.requests == []


def test_init_kyc_whitespace_field_is_reported_as_blank(client, digio_api, make_subscription):
    subscription = make_subscription()

    response = client.post("/api/kyc/init", json=_init_body(subscription.id, customer_identifier="   "))

    assert response.status_code == 400
    body = response.json()
    assert body["message"] == "Required fields cannot be blank: customer_identifier"
    assert body["blankFields"] == ["customer_identifier"]
    assert "missingFields" not in body
    assert digio_api.requests == []


def test_init_kyc_unknown_subscription(client, digio_api):
    response = client.post("/api/kyc/init", json=_init_body("sub_does_not_exist"))

    assert response.status_code == 404
    assert digio_api.requests == []


def test_init_kyc_for_another_users_subscription(client, digio_api, make_subscription):
    subscription = make_subscription(user_id="someone_else")

    response = client.post("/api/kyc/init", json=_init_body(subscription.id))

    assert response.status_code == 403
    assert digio_api.requests == []


def test_init_kyc_response_without_url_is_rejected(client, digio_api, db, make_subscription):
    subscription = make_subscription()
    vendor_body = _digio_response(subscription.id)
    del vendor_body["url"]
    digio_api.on("POST", INIT_PATH, json=vendor_body)

    response = client.post("/api/kyc/init", json=_init_body(subscription.id))

    assert response.status_code == 502
    db.expire_all()
    stored = db.get(Subscription, subscription.id)
    assert stored.kyc_status == KycStatus.PENDING
    assert stored.kyc_reference_id is None


def test_init_kyc_vendor_rejects_request(client, digio_api, db, make_subscription):
    subscription = make_subscription()
    digio_api.on("POST", INIT_PATH, json={"code": "UNAUTHORIZED", "message": "Invalid credentials"}, status_code=401)

    response = client.post("/api/kyc/init", json=_init_body(subscription.id))

    assert response.status_code == 502
    assert response.json()["message"] == "KYC initiation failed"
    db.expire_all()
    assert db.get(Subscription, subscription.id).kyc_status == KycStatus.PENDING


def test_init_kyc_vendor_timeout(client, digio_api, make_subscription):
    subscription = make_subscription()
    digio_api.on("POST", INIT_PATH, raises=httpx.ConnectTimeout("timed out"))

    response = client.post("/api/kyc/init", json=_init_body(subscription.id))

    assert response.status_code == 504


def test_init_kyc_subscription_gone_before_update(client, digio_api, monkeypatch):
    # Lookup sees a subscription that is no longer in the table when the update runs
    ghost = Subscription(id="sub_ghost", user_id="user_1")
    monkeypatch.setattr("advisory.api.routes.kyc.get_subscription", lambda db, subscription_id: ghost)
    digio_api.on("POST", INIT_PATH, json=_digio_response("sub_ghost"))

    response = client.post("/api/kyc/init", json=_init_body("sub_ghost"))

    assert response.status_code == 404
    assert "kycUrl" not in response.text


def test_init_kyc_on_verified_subscription_is_refused(client, digio_api, make_subscription, snapshot):
    make_subscription(kyc_status=KycStatus.VERIFIED, kyc_reference_id="ref_old")
    before = snapshot()

    response = client.post("/api/kyc/init", json=_init_body(before[0]["id"]))

    assert response.status_code == 409
    assert response.json()["message"] == "KYC already verified for this subscription"
    assert digio_api.requests == []
    assert snapshot() == before


def test_mark_kyc_initiated_leaves_verified_subscription_alone(db, make_subscription, snapshot):
    subscription = make_subscription(kyc_status=KycStatus.VERIFIED, kyc_reference_id="ref_old")
    before = snapshot()

    updated = mark_kyc_initiated(db, subscription.id, "ref_new", "KID_NEW")

    assert updated == 0
    assert snapshot() == before


def test_init_kyc_verified_between_lookup_and_update(client, digio_api, make_subscription, monkeypatch, snapshot):
    subscription = make_subscription(kyc_status=KycStatus.VERIFIED, kyc_reference_id="ref_old")
    before = snapshot()
    stale = Subscription(id=subscription.id, user_id="user_1", kyc_status=KycStatus.PENDING)
    lookups = [stale]

    def fake_get_subscription(db, subscription_id):
        if lookups:
            return lookups.pop()
        return get_subscription(db, subscription_id)

    monkeypatch.setattr("advisory.api.routes.kyc.get_subscription", fake_get_subscription)
    digio_api.on("POST", INIT_PATH, json=_digio_response("ref_new"))

    response = client.post("/api/kyc/init", json=_init_body(subscription.id))

    assert response.status_code == 409
    assert "kycUrl" not in response.text
    assert snapshot() == before


def test_init_kyc_reference_already_linked_elsewhere(client, digio_api, make_subscription, snapshot):
    make_subscription(kyc_status=KycStatus.INITIATED, kyc_reference_id="ref_dup")
    other = make_subscription()
    before = snapshot()
    digio_api.on("POST", INIT_PATH, json=_digio_response("ref_dup"))

    response = client.post("/api/kyc/init", json=_init_body(other.id))

    assert response.status_code == 409
    assert response.json()["message"] == "KYC reference already linked to another subscription"
    assert len(digio_api.requests) == 1
    assert snapshot() == before
