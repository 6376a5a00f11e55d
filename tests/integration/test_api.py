"""
HTTP tests for the routers.
Uses pytest-asyncio + httpx AsyncClient over ASGITransport, with the
database and Redis dependencies pointed at the test fixtures.
"""
import logging
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from luba.config import get_settings
from luba.database import get_db, get_session_factory
from luba.errors import ValidationError
from luba.main import app
from luba.middleware.auth import create_access_token
from luba.redis_client import get_redis
from luba.routers import payments as payments_router
from luba.schemas.schemas import Coordinates
from luba.services import geocoding, identity, image_host

settings = get_settings()

CUSTOMER_TOKEN = create_access_token({"sub": "cust-1", "role": "customer", "name": "thabo_m"})
DRIVER_TOKEN = create_access_token({"sub": "drv-1", "role": "driver", "name": "Sipho"})
DRIVER2_TOKEN = create_access_token({"sub": "drv-2", "role": "driver", "name": "Lerato"})
ADMIN_TOKEN = create_access_token({"sub": "ops-1", "role": "admin"})

RIDE = {
    "pickup": "V&A Waterfront, Cape Town",
    "dropoff": "Cape Town International Airport",
    "vehicle": "Van",
    "payment_method": "card",
    "pickup_coords": {"lat": -33.9036, "lng": 18.4207},
    "dropoff_coords": {"lat": -33.9715, "lng": 18.6021},
}

APPLICATION = {
    "full_name": "Sipho Dlamini",
    "phone_number": "0821234567",
    "address": "5 Main Road, Rondebosch",
    "driver_image_url": "https://img.example/d.jpg",
    "license_photo_url": "https://img.example/l.jpg",
    "car_image_url": "https://img.example/c.jpg",
}


def _auth(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def customer_headers():
    return _auth(CUSTOMER_TOKEN)


@pytest.fixture
def driver_headers():
    return _auth(DRIVER_TOKEN)


@pytest_asyncio.fixture
async def client(session_factory, redis):
    async def _db():
        async with session_factory() as s:
            yield s

    async def _redis():
        return redis

    app.dependency_overrides[get_db] = _db
    app.dependency_overrides[get_redis] = _redis
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


async def _approved_online_driver(client, headers, driver_id):
    resp = await client.post("/v1/drivers/application", json=APPLICATION, headers=headers)
    assert resp.status_code == 201
    resp = await client.patch(
        f"/v1/drivers/{driver_id}/approval",
        json={"approval_status": "approved"},
        headers=_auth(ADMIN_TOKEN),
    )
    assert resp.status_code == 200
    resp = await client.post("/v1/drivers/me/online", headers=headers)
    assert resp.status_code == 200


@pytest.mark.asyncio
class TestRideAPI:
    async def test_health_check(self, client):
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"

    async def test_create_ride_missing_auth(self, client):
        resp = await client.post("/v1/rides", json=RIDE)
        assert resp.status_code == 401

    async def test_create_ride_blank_pickup(self, client, customer_headers):
        resp = await client.post("/v1/rides", json={**RIDE, "pickup": "   "}, headers=customer_headers)
        assert resp.status_code == 422

    async def test_create_and_read_back(self, client, customer_headers):
        resp = await client.post("/v1/rides", json=RIDE, headers=customer_headers)
        assert resp.status_code == 201
        body = resp.json()
        assert body["status"] == "pending"
        assert float(body["price"]) > 200

        resp = await client.get("/v1/rides", headers=customer_headers)
        history = resp.json()
        assert len(history) == 1
        assert history[0]["request_id"] == body["id"]

        resp = await client.get(f"/v1/rides/{body['customer_booking_id']}", headers=customer_headers)
        assert resp.status_code == 200
        assert resp.json()["vehicle"] == "Van"

    async def test_idempotent_create(self, client, customer_headers):
        headers = {**customer_headers, "Idempotency-Key": "key-123"}
        first = await client.post("/v1/rides", json=RIDE, headers=headers)
        second = await client.post("/v1/rides", json=RIDE, headers=headers)
        assert first.status_code == second.status_code == 201
        assert second.headers.get("X-Idempotency-Replay") == "true"
        assert second.json()["id"] == first.json()["id"]

        history = (await client.get("/v1/rides", headers=customer_headers)).json()
        assert len(history) == 1

    async def test_get_nonexistent_booking(self, client, customer_headers):
        resp = await client.get("/v1/rides/nonexistent-uuid", headers=customer_headers)
        assert resp.status_code == 404
        assert resp.json()["error"] == "NotFound"

    async def test_delete_and_clear(self, client, customer_headers):
        a = (await client.post("/v1/rides", json=RIDE, headers=customer_headers)).json()
        await client.post("/v1/rides", json=RIDE, headers=customer_headers)

        resp = await client.delete(f"/v1/rides/{a['customer_booking_id']}", headers=customer_headers)
        assert resp.status_code == 204
        resp = await client.delete("/v1/rides", headers=customer_headers)
        assert resp.json() == {"deleted": 1}

    async def test_rebook(self, client, customer_headers):
        a = (await client.post("/v1/rides", json=RIDE, headers=customer_headers)).json()
        resp = await client.post(
            f"/v1/rides/{a['customer_booking_id']}/rebook",
            json={"payment_method": "cash"},
            headers=customer_headers,
        )
        assert resp.status_code == 201
        assert resp.json()["id"] != a["id"]
        assert resp.json()["payment_method"] == "cash"

    async def test_quote_geocodes_addresses(self, client, customer_headers, monkeypatch):
        points = {
            "Rosebank": Coordinates(lat=-26.1457, lng=28.0414),
            "Sandton": Coordinates(lat=-26.1076, lng=28.0567),
        }
        monkeypatch.setattr(geocoding, "geocode", AsyncMock(side_effect=lambda address: points[address]))
        resp = await client.post(
            "/v1/rides/quote",
            json={"pickup": "Rosebank", "dropoff": "Sandton", "vehicle": "Bakkie"},
            headers=customer_headers,
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["base_price"] == 180.0
        assert body["price"] == pytest.approx(body["base_price"] + body["distance_fee"])
        assert body["currency"] == "ZAR"

    async def test_unresolvable_address(self, client, customer_headers, monkeypatch):
        monkeypatch.setattr(
            geocoding, "geocode", AsyncMock(side_effect=ValidationError(geocoding.INVALID_ADDRESS))
        )
        resp = await client.post(
            "/v1/rides",
            json={k: v for k, v in RIDE.items() if not k.endswith("_coords")},
            headers=customer_headers,
        )
        assert resp.status_code == 422
        assert resp.json() == {"detail": geocoding.INVALID_ADDRESS, "error": "ValidationError"}


@pytest.mark.asyncio
class TestDriverAPI:
    async def test_unapproved_driver_blocked(self, client, driver_headers):
        resp = await client.post("/v1/drivers/application", json=APPLICATION, headers=driver_headers)
        assert resp.json()["approval_status"] == "pending"

        for path in ("/v1/drivers/me/requests/pending", "/v1/drivers/me/requests/pending/stream"):
            resp = await client.get(path, headers=driver_headers)
            assert resp.status_code == 403
            assert resp.json()["error"] == "NotApproved"
        resp = await client.post("/v1/drivers/me/online", headers=driver_headers)
        assert resp.status_code == 403

    async def test_approval_requires_admin(self, client, driver_headers):
        await client.post("/v1/drivers/application", json=APPLICATION, headers=driver_headers)
        resp = await client.patch(
            "/v1/drivers/drv-1/approval", json={"approval_status": "approved"}, headers=driver_headers
        )
        assert resp.status_code == 403

    async def test_full_dispatch_flow(self, client, customer_headers, driver_headers):
        await _approved_online_driver(client, driver_headers, "drv-1")
        ride = (await client.post("/v1/rides", json=RIDE, headers=customer_headers)).json()

        pending = (await client.get("/v1/drivers/me/requests/pending", headers=driver_headers)).json()
        assert [r["id"] for r in pending] == [ride["id"]]

        resp = await client.post(f"/v1/drivers/me/requests/{ride['id']}/accept", headers=driver_headers)
        assert resp.status_code == 200
        assert resp.json()["request"]["driver_name"] == "Sipho"
        assert resp.json()["previous_status"] == "pending"

        assigned = (await client.get("/v1/drivers/me/requests/assigned", headers=driver_headers)).json()
        assert [r["id"] for r in assigned] == [ride["id"]]

        resp = await client.post(f"/v1/drivers/me/requests/{ride['id']}/complete", headers=driver_headers)
        assert resp.status_code == 200
        assert resp.json()["shift_id"] is not None

        weekly = (await client.get("/v1/drivers/me/earnings/weekly", headers=driver_headers)).json()
        assert weekly["rides"] == 1
        assert float(weekly["earnings"]) == pytest.approx(float(ride["price"]))

        booking = (
            await client.get(f"/v1/rides/{ride['customer_booking_id']}", headers=customer_headers)
        ).json()
        assert booking["status"] == "completed"

    async def test_second_driver_gets_conflict(self, client, customer_headers, driver_headers):
        await _approved_online_driver(client, driver_headers, "drv-1")
        await _approved_online_driver(client, _auth(DRIVER2_TOKEN), "drv-2")
        ride = (await client.post("/v1/rides", json=RIDE, headers=customer_headers)).json()

        await client.post(f"/v1/drivers/me/requests/{ride['id']}/accept", headers=driver_headers)
        resp = await client.post(
            f"/v1/drivers/me/requests/{ride['id']}/accept", headers=_auth(DRIVER2_TOKEN)
        )
        assert resp.status_code == 409
        assert resp.json()["error"] == "AlreadyTaken"

    async def test_decline_shows_driver_declined(self, client, customer_headers, driver_headers):
        await _approved_online_driver(client, driver_headers, "drv-1")
        ride = (await client.post("/v1/rides", json=RIDE, headers=customer_headers)).json()
        resp = await client.post(f"/v1/drivers/me/requests/{ride['id']}/decline", headers=driver_headers)
        assert resp.json()["request"]["status"] == "declined"

        booking = (
            await client.get(f"/v1/rides/{ride['customer_booking_id']}", headers=customer_headers)
        ).json()
        assert booking["status"] == "driver_declined"

    async def test_partial_write_reported(self, client, customer_headers, driver_headers):
        await _approved_online_driver(client, driver_headers, "drv-1")
        ride = (await client.post("/v1/rides", json=RIDE, headers=customer_headers)).json()
        await client.delete(f"/v1/rides/{ride['customer_booking_id']}", headers=customer_headers)

        resp = await client.post(f"/v1/drivers/me/requests/{ride['id']}/accept", headers=driver_headers)
        assert resp.status_code == 207
        assert resp.json()["partially_applied"] is True

    async def test_go_offline(self, client, driver_headers):
        await _approved_online_driver(client, driver_headers, "drv-1")
        resp = await client.post("/v1/drivers/me/offline", headers=driver_headers)
        assert resp.status_code == 200
        assert resp.json()["end_time"] is not None

    async def test_photo_upload(self, client, driver_headers, monkeypatch):
        upload = AsyncMock(return_value="https://res.cloudinary.com/demo/car.jpg")
        monkeypatch.setattr(image_host, "upload_image", upload)
        resp = await client.post(
            "/v1/drivers/photos",
            data={"kind": "car"},
            files={"file": ("car.jpg", b"\xff\xd8\xff", "image/jpeg")},
            headers=driver_headers,
        )
        assert resp.status_code == 201
        assert resp.json() == {"kind": "car", "url": "https://res.cloudinary.com/demo/car.jpg"}
        assert upload.await_args.args[0] == b"\xff\xd8\xff"


@pytest.mark.asyncio
class TestPaymentAPI:
    async def test_checkout_callback_notify(self, client, customer_headers, monkeypatch):
        ride = (await client.post("/v1/rides", json=RIDE, headers=customer_headers)).json()

        resp = await client.post(
            "/v1/payments/checkout",
            json={"request_id": ride["id"], "name_first": "Thabo"},
            headers=customer_headers,
        )
        assert resp.status_code == 201
        checkout = resp.json()
        assert checkout["payment_url"].startswith(settings.payfast_process_url)
        assert float(checkout["amount"]) == pytest.approx(float(ride["price"]))

        resp = await client.post(
            "/v1/payments/callback",
            json={"reference": checkout["reference"], "url": settings.payfast_return_url},
            headers=customer_headers,
        )
        assert resp.json()["status"] == "callback_success"
        assert resp.json()["verified"] is False

        monkeypatch.setattr(payments_router, "verify_notification", AsyncMock(return_value=True))
        resp = await client.post(
            "/v1/payments/notify",
            data={
                "m_payment_id": checkout["reference"],
                "pf_payment_id": "1089250",
                "payment_status": "COMPLETE",
                "amount_gross": checkout["amount"],
                "signature": "checked-by-mock",
            },
        )
        assert resp.json() == {"status": "verified"}

        resp = await client.get(f"/v1/payments/{checkout['payment_id']}", headers=customer_headers)
        assert resp.json()["verified"] is True

    async def test_checkout_other_customers_request(self, client, customer_headers):
        ride = (await client.post("/v1/rides", json=RIDE, headers=customer_headers)).json()
        resp = await client.post(
            "/v1/payments/checkout",
            json={"request_id": ride["id"]},
            headers=_auth(create_access_token({"sub": "cust-2"})),
        )
        assert resp.status_code == 404


@pytest.mark.asyncio
class TestAuthAPI:
    async def test_signup_and_signin(self, client, monkeypatch):
        monkeypatch.setattr(identity, "sign_up", AsyncMock(return_value={"uid": "uid-1", "id_token": "t"}))
        monkeypatch.setattr(identity, "sign_in", AsyncMock(return_value={"uid": "uid-1", "id_token": "t"}))
        resp = await client.post(
            "/v1/auth/signup",
            json={
                "username": "thabo_m",
                "email": "Thabo@Example.com",
                "password": "Secret#123",
                "confirm_password": "Secret#123",
            },
        )
        assert resp.status_code == 201
        assert resp.json()["user_id"] == "uid-1"
        assert resp.json()["role"] == "customer"

        resp = await client.post("/v1/auth/signin", json={"email": "thabo@example.com", "password": "Secret#123"})
        assert resp.status_code == 200
        token = resp.json()["access_token"]

        me = (await client.get("/v1/auth/me", headers=_auth(token))).json()
        assert me["email"] == "thabo@example.com"

    async def test_signup_validation_before_provider(self, client, monkeypatch):
        sign_up = AsyncMock()
        monkeypatch.setattr(identity, "sign_up", sign_up)
        resp = await client.post(
            "/v1/auth/signup",
            json={"username": "tm", "email": "bad", "password": "x", "confirm_password": "y"},
        )
        assert resp.status_code == 422
        assert set(resp.json()["fields"]) == {"username", "email", "password", "confirm_password"}
        sign_up.assert_not_awaited()

    async def test_deactivated_account_cannot_sign_in(self, client, monkeypatch):
        monkeypatch.setattr(identity, "sign_up", AsyncMock(return_value={"uid": "uid-2", "id_token": "t"}))
        monkeypatch.setattr(identity, "sign_in", AsyncMock(return_value={"uid": "uid-2", "id_token": "t"}))
        body = {
            "username": "lerato_k",
            "email": "lerato@example.com",
            "password": "Secret#123",
            "confirm_password": "Secret#123",
        }
        token = (await client.post("/v1/auth/signup", json=body)).json()["access_token"]
        await client.post("/v1/auth/deactivate", headers=_auth(token))

        resp = await client.post("/v1/auth/signin", json={"email": body["email"], "password": body["password"]})
        assert resp.status_code == 401
        assert resp.json()["error"] == "AuthError"


@pytest.mark.asyncio
class TestPaymentNotifyReplay:
    async def _verified_payment(self, client, customer_headers, monkeypatch):
        ride = (await client.post("/v1/rides", json=RIDE, headers=customer_headers)).json()
        checkout = (
            await client.post("/v1/payments/checkout", json={"request_id": ride["id"]}, headers=customer_headers)
        ).json()
        form = {
            "m_payment_id": checkout["reference"],
            "pf_payment_id": "1089250",
            "payment_status": "COMPLETE",
            "amount_gross": checkout["amount"],
            "signature": "checked-by-mock",
        }
        monkeypatch.setattr(payments_router, "verify_notification", AsyncMock(return_value=True))
        assert (await client.post("/v1/payments/notify", data=form)).json() == {"status": "verified"}
        return checkout, form

    async def test_rejected_replay_keeps_verified(self, client, customer_headers, monkeypatch):
        checkout, form = await self._verified_payment(client, customer_headers, monkeypatch)

        verify = AsyncMock(return_value=False)
        monkeypatch.setattr(payments_router, "verify_notification", verify)
        resp = await client.post("/v1/payments/notify", data=form)
        assert resp.json() == {"status": "verified"}
        verify.assert_not_awaited()

        resp = await client.get(f"/v1/payments/{checkout['payment_id']}", headers=customer_headers)
        assert resp.json()["verified"] is True

    async def test_cancelled_replay_keeps_verified(self, client, customer_headers, monkeypatch):
        checkout, form = await self._verified_payment(client, customer_headers, monkeypatch)
        resp = await client.post("/v1/payments/notify", data={**form, "payment_status": "CANCELLED"})
        assert resp.json() == {"status": "verified"}

    async def test_unknown_reference(self, client):
        resp = await client.post("/v1/payments/notify", data={"m_payment_id": "nope"})
        assert resp.status_code == 404


@pytest.mark.asyncio
class TestResyncAPI:
    async def test_resync_still_diverged(self, client, customer_headers, driver_headers):
        await _approved_online_driver(client, driver_headers, "drv-1")
        ride = (await client.post("/v1/rides", json=RIDE, headers=customer_headers)).json()
        await client.delete(f"/v1/rides/{ride['customer_booking_id']}", headers=customer_headers)
        await client.post(f"/v1/drivers/me/requests/{ride['id']}/accept", headers=driver_headers)

        resp = await client.post(f"/v1/drivers/me/requests/{ride['id']}/resync", headers=driver_headers)
        assert resp.status_code == 207
        assert resp.json()["error"] == "PartialWriteDivergence"
        assert resp.json()["request_id"] == ride["id"]

    async def test_resync_in_sync(self, client, customer_headers, driver_headers):
        await _approved_online_driver(client, driver_headers, "drv-1")
        ride = (await client.post("/v1/rides", json=RIDE, headers=customer_headers)).json()
        await client.post(f"/v1/drivers/me/requests/{ride['id']}/accept", headers=driver_headers)

        resp = await client.post(f"/v1/drivers/me/requests/{ride['id']}/resync", headers=driver_headers)
        assert resp.status_code == 200
        assert resp.json()["partially_applied"] is False
        assert resp.json()["request"]["status"] == "accepted"

    async def test_resync_other_drivers_request(self, client, customer_headers, driver_headers):
        await _approved_online_driver(client, driver_headers, "drv-1")
        await _approved_online_driver(client, _auth(DRIVER2_TOKEN), "drv-2")
        ride = (await client.post("/v1/rides", json=RIDE, headers=customer_headers)).json()
        await client.post(f"/v1/drivers/me/requests/{ride['id']}/accept", headers=driver_headers)

        resp = await client.post(
            f"/v1/drivers/me/requests/{ride['id']}/resync", headers=_auth(DRIVER2_TOKEN)
        )
        assert resp.status_code == 404


@pytest.mark.asyncio
class TestFeedbackAPI:
    async def test_submit(self, client, customer_headers):
        resp = await client.post(
            "/v1/feedback",
            json={"message": "  Driver was early, thanks!  ", "contact": "0723456789"},
            headers=customer_headers,
        )
        assert resp.status_code == 201
        body = resp.json()
        assert body["message"] == "Driver was early, thanks!"
        assert body["contact"] == "0723456789"
        assert body["submitted_at"]

    async def test_blank_message_rejected(self, client, customer_headers):
        resp = await client.post("/v1/feedback", json={"message": "   "}, headers=customer_headers)
        assert resp.status_code == 422
        assert resp.json()["error"] == "ValidationError"
        assert "message" in resp.json()["fields"]

    async def test_requires_sign_in(self, client):
        resp = await client.post("/v1/feedback", json={"message": "hello"})
        assert resp.status_code == 401


@pytest.mark.asyncio
class TestErrorHandling:
    async def test_store_failure_is_bad_gateway(self, client, driver_headers, monkeypatch):
        await client.post("/v1/drivers/application", json=APPLICATION, headers=driver_headers)
        await client.patch(
            "/v1/drivers/drv-1/approval", json={"approval_status": "approved"}, headers=_auth(ADMIN_TOKEN)
        )

        async def _failing_commit(self):
            raise OperationalError("COMMIT", {}, Exception("connection reset"))

        monkeypatch.setattr(AsyncSession, "commit", _failing_commit)
        resp = await client.post("/v1/drivers/me/online", headers=driver_headers)
        assert resp.status_code == 502
        assert resp.json()["error"] == "NetworkError"

    async def test_domain_errors_are_logged(self, client, customer_headers, caplog):
        with caplog.at_level(logging.WARNING, logger="luba.main"):
            resp = await client.get("/v1/rides/nonexistent-uuid", headers=customer_headers)
        assert resp.status_code == 404
        assert any(
            r.name == "luba.main" and "NotFound" in r.getMessage() for r in caplog.records
        )
