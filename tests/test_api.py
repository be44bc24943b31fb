"""
Integration tests for the REST API endpoints.

The app is built around the test service graph (SQLite + in-memory
location store) with the maintenance worker disabled; callers identify
themselves through the ``X-User-Id`` / ``X-User-Role`` headers the gateway
would forward.
"""

from __future__ import annotations

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from tripcore.api.app import create_app
from tripcore.domain.enums import UserRole
from tripcore.infrastructure.location_store import MemoryLocationStore
from tripcore.infrastructure.routing import HttpRoutingProvider
from tripcore.services.container import build_services

MG_ROAD = {"lat": 12.9716, "lng": 77.5946, "address": "MG Road"}
KORAMANGALA = {"lat": 12.9352, "lng": 77.6245, "address": "Koramangala"}
BRIGADE_ROAD = {"lat": 12.9720, "lng": 77.5950, "address": "Brigade Road"}
FORUM_MALL = {"lat": 12.9360, "lng": 77.6250, "address": "Forum Mall"}


def as_user(user) -> dict[str, str]:
    return {"X-User-Id": str(user.id), "X-User-Role": user.role.value}


# ── Fixtures ──────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def client(services):
    app = create_app(services=services, run_worker=False)
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac


@pytest_asyncio.fixture
async def driver(make_user):
    return await make_user(UserRole.DRIVER, name="Vikram")


@pytest_asyncio.fixture
async def passenger(make_user):
    return await make_user(UserRole.PASSENGER, name="Asha")


@pytest_asyncio.fixture
async def offer_id(client: AsyncClient, driver) -> int:
    resp = await client.post(
        "/api/v1/offers",
        json={
            "car_model": "Maruti Dzire",
            "car_number": "KA01AB1234",
            "capacity": 4,
            "lat": 12.9712,
            "lng": 77.5940,
            "price_per_km": 12,
        },
        headers=as_user(driver),
    )
    assert resp.status_code == 201
    return resp.json()["id"]


async def _book(client, passenger, offer_id, **extra) -> dict:
    resp = await client.post(
        "/api/v1/bookings",
        json={"offer_id": offer_id, "pickup": MG_ROAD, "dropoff": KORAMANGALA, **extra},
        headers=as_user(passenger),
    )
    assert resp.status_code == 201
    return resp.json()


async def _move(client, user, booking_id, status, otp=None):
    body = {"status": status}
    if otp is not None:
        body["otp"] = otp
    return await client.patch(
        f"/api/v1/bookings/{booking_id}/status", json=body, headers=as_user(user)
    )


# ── Tests ─────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    resp = await client.get("/api/v1/admin/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


@pytest.mark.asyncio
async def test_go_online(client: AsyncClient, driver, offer_id):
    resp = await client.get(f"/api/v1/offers/{offer_id}")
    assert resp.status_code == 200
    data = resp.json()
    assert data["driver_id"] == driver.id
    assert data["status"] == "empty"
    assert data["available_seats"] == 4


@pytest.mark.asyncio
async def test_passenger_cannot_go_online(client: AsyncClient, passenger):
    resp = await client.post(
        "/api/v1/offers",
        json={"car_model": "Dzire", "car_number": "KA01", "lat": 12.97, "lng": 77.59},
        headers=as_user(passenger),
    )
    assert resp.status_code == 403
    assert resp.json()["code"] == "permission_denied"


@pytest.mark.asyncio
async def test_create_booking(client: AsyncClient, passenger, offer_id):
    data = await _book(client, passenger, offer_id)
    assert data["status"] == "pending"
    assert data["passenger_id"] == passenger.id
    assert len(data["otp"]) == 4


@pytest.mark.asyncio
async def test_create_booking_needs_identity(client: AsyncClient, offer_id):
    resp = await client.post(
        "/api/v1/bookings",
        json={"offer_id": offer_id, "pickup": MG_ROAD, "dropoff": KORAMANGALA},
    )
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_create_booking_unknown_offer(client: AsyncClient, passenger):
    resp = await client.post(
        "/api/v1/bookings",
        json={"offer_id": 999, "pickup": MG_ROAD, "dropoff": KORAMANGALA},
        headers=as_user(passenger),
    )
    assert resp.status_code == 400
    assert resp.json()["code"] == "validation_error"


@pytest.mark.asyncio
async def test_create_booking_rejects_bad_coordinates(
    client: AsyncClient, passenger, offer_id
):
    resp = await client.post(
        "/api/v1/bookings",
        json={
            "offer_id": offer_id,
            "pickup": {"lat": 123.0, "lng": 77.59},
            "dropoff": KORAMANGALA,
        },
        headers=as_user(passenger),
    )
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_get_booking_detail(client: AsyncClient, passenger, driver, offer_id):
    booking = await _book(client, passenger, offer_id)
    resp = await client.get(f"/api/v1/bookings/{booking['id']}")
    assert resp.status_code == 200
    data = resp.json()
    assert data["booking"]["id"] == booking["id"]
    assert data["offer"]["id"] == offer_id
    assert data["driver"]["id"] == driver.id


@pytest.mark.asyncio
async def test_only_the_passenger_sees_the_otp(
    client: AsyncClient, passenger, driver, offer_id
):
    booking = await _book(client, passenger, offer_id)
    url = f"/api/v1/bookings/{booking['id']}"

    resp = await client.get(url, headers=as_user(passenger))
    assert resp.json()["booking"]["otp"] == booking["otp"]

    resp = await client.get(url, headers=as_user(driver))
    assert resp.json()["booking"]["otp"] is None
    resp = await client.get(url)
    assert resp.json()["booking"]["otp"] is None

    await _move(client, driver, booking["id"], "accepted")
    resp = await client.get("/api/v1/user/active-booking", headers=as_user(passenger))
    assert resp.json()["otp"] == booking["otp"]
    resp = await client.get("/api/v1/user/active-booking", headers=as_user(driver))
    assert resp.json()["id"] == booking["id"]
    assert resp.json()["otp"] is None


@pytest.mark.asyncio
async def test_get_booking_not_found(client: AsyncClient):
    resp = await client.get("/api/v1/bookings/9999")
    assert resp.status_code == 404
    assert resp.json() == {"detail": "Booking 9999 not found", "code": "not_found"}


@pytest.mark.asyncio
async def test_pending_listing(client: AsyncClient, passenger, offer_id):
    booking = await _book(client, passenger, offer_id)
    resp = await client.get("/api/v1/bookings", params={"status": "pending"})
    assert resp.status_code == 200
    assert [b["id"] for b in resp.json()] == [booking["id"]]
    assert "otp" not in resp.json()[0]


@pytest.mark.asyncio
async def test_full_trip(client: AsyncClient, services, passenger, driver, offer_id):
    booking = await _book(client, passenger, offer_id, distance_km=5.3)
    bid = booking["id"]

    resp = await _move(client, driver, bid, "accepted")
    assert resp.status_code == 200
    assert "otp" not in resp.json()

    assert (await _move(client, driver, bid, "arrived")).status_code == 200

    wrong = "1000" if booking["otp"] != "1000" else "1001"
    resp = await _move(client, driver, bid, "in_progress", otp=wrong)
    assert resp.status_code == 400
    assert resp.json()["code"] == "otp_mismatch"

    resp = await _move(client, driver, bid, "in_progress", otp=booking["otp"])
    assert resp.status_code == 200
    assert resp.json()["status"] == "in_progress"

    resp = await client.post(
        "/api/v1/driver/location",
        json={"booking_id": bid, "lat": 12.95, "lng": 77.61, "heading": 135.0},
        headers=as_user(driver),
    )
    assert resp.status_code == 200
    resp = await client.get(f"/api/v1/driver/location/{bid}")
    assert resp.status_code == 200
    assert resp.json()["heading"] == 135.0

    resp = await _move(client, driver, bid, "completed")
    assert resp.status_code == 200
    assert resp.json()["fare"] == 64

    resp = await client.get(f"/api/v1/driver/location/{bid}")
    assert resp.status_code == 404

    resp = await client.get("/api/v1/driver/stats", headers=as_user(driver))
    assert resp.json() == {"earnings": 64, "total_trips": 1}
    resp = await client.get("/api/v1/driver/earnings", headers=as_user(driver))
    assert resp.json() == {"earnings": 64}

    resp = await client.get("/api/v1/user/history", headers=as_user(passenger))
    assert [b["id"] for b in resp.json()] == [bid]


@pytest.mark.asyncio
async def test_passenger_cannot_accept(client: AsyncClient, passenger, offer_id):
    booking = await _book(client, passenger, offer_id)
    resp = await _move(client, passenger, booking["id"], "accepted")
    assert resp.status_code == 403


@pytest.mark.asyncio
@pytest.mark.parametrize("status", ["cancelled", "accepted", "arrived", "completed"])
async def test_status_change_needs_identity(
    client: AsyncClient, passenger, offer_id, status
):
    booking = await _book(client, passenger, offer_id)
    resp = await client.patch(
        f"/api/v1/bookings/{booking['id']}/status", json={"status": status}
    )
    assert resp.status_code == 403
    assert resp.json()["code"] == "permission_denied"

    resp = await client.get(f"/api/v1/bookings/{booking['id']}")
    assert resp.json()["booking"]["status"] == "pending"


@pytest.mark.asyncio
async def test_stranger_cannot_cancel(client: AsyncClient, make_user, passenger, offer_id):
    booking = await _book(client, passenger, offer_id)
    stranger = await make_user(name="Chandra")
    resp = await _move(client, stranger, booking["id"], "cancelled")
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_cancel_then_accept_conflicts(
    client: AsyncClient, passenger, driver, offer_id
):
    booking = await _book(client, passenger, offer_id)
    resp = await _move(client, passenger, booking["id"], "cancelled")
    assert resp.status_code == 200
    assert resp.json()["status"] == "cancelled"

    resp = await _move(client, driver, booking["id"], "accepted")
    assert resp.status_code == 409
    assert resp.json()["code"] == "invalid_state"


@pytest.mark.asyncio
async def test_start_without_otp(client: AsyncClient, passenger, driver, offer_id):
    booking = await _book(client, passenger, offer_id)
    await _move(client, driver, booking["id"], "accepted")
    await _move(client, driver, booking["id"], "arrived")
    resp = await _move(client, driver, booking["id"], "in_progress")
    assert resp.status_code == 400
    assert resp.json()["code"] == "validation_error"


@pytest.mark.asyncio
async def test_watch_returns_when_status_already_differs(
    client: AsyncClient, passenger, driver, offer_id
):
    booking = await _book(client, passenger, offer_id)
    await _move(client, driver, booking["id"], "accepted")
    resp = await client.get(
        f"/api/v1/bookings/{booking['id']}/watch",
        params={"status": "pending", "timeout": 1},
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "accepted"


@pytest.mark.asyncio
async def test_watch_times_out(client: AsyncClient, passenger, offer_id):
    booking = await _book(client, passenger, offer_id)
    resp = await client.get(
        f"/api/v1/bookings/{booking['id']}/watch",
        params={"status": "pending", "timeout": 0.05},
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "pending"


@pytest.mark.asyncio
async def test_active_booking(client: AsyncClient, passenger, driver, offer_id):
    booking = await _book(client, passenger, offer_id)
    resp = await client.get("/api/v1/user/active-booking", headers=as_user(passenger))
    assert resp.json()["id"] == booking["id"]

    resp = await client.get("/api/v1/user/active-booking", headers=as_user(driver))
    assert resp.json() is None


@pytest.mark.asyncio
async def test_pool_join_flow(client: AsyncClient, make_user, passenger, driver, offer_id):
    anchor = await _book(client, passenger, offer_id, is_pool=True)
    await _move(client, driver, anchor["id"], "accepted")

    resp = await client.post(
        "/api/v1/pools/available",
        json={"pickup": BRIGADE_ROAD, "dropoff": FORUM_MALL},
    )
    assert resp.status_code == 200
    pools = resp.json()
    assert [p["booking"]["id"] for p in pools] == [anchor["id"]]
    assert pools[0]["available_seats"] == 3
    assert "otp" not in pools[0]["booking"]

    rider = await make_user(name="Bala")
    resp = await client.post(
        "/api/v1/pools/join-request",
        json={
            "anchor_booking_id": anchor["id"],
            "pickup": BRIGADE_ROAD,
            "dropoff": FORUM_MALL,
            "distance_km": 2.0,
        },
        headers=as_user(rider),
    )
    assert resp.status_code == 201
    join = resp.json()
    assert join["join_status"] == "pending"

    resp = await client.get(f"/api/v1/pools/requests/{offer_id}")
    assert [b["id"] for b in resp.json()] == [join["id"]]

    resp = await client.patch(
        f"/api/v1/pools/respond/{join['id']}",
        json={"action": "accept", "price_per_km": 10},
        headers=as_user(driver),
    )
    assert resp.status_code == 200
    decision = resp.json()
    assert decision["accepted"] is True
    assert decision["fare"] == 20
    assert decision["booking"]["join_status"] == "accepted"

    resp = await client.get(f"/api/v1/pools/{anchor['id']}/passengers")
    assert [b["id"] for b in resp.json()] == [join["id"]]

    resp = await client.get(f"/api/v1/offers/{offer_id}")
    assert resp.json()["occupied"] == 2

    resp = await client.post(
        "/api/v1/offers/match",
        json={"pickup": BRIGADE_ROAD, "dropoff": FORUM_MALL},
    )
    assert [o["id"] for o in resp.json()] == [offer_id]

    resp = await client.get("/api/v1/admin/active-pools")
    assert resp.status_code == 200
    pool = resp.json()[0]
    assert pool["offer"]["id"] == offer_id
    assert {b["id"] for b in pool["riders"]} == {anchor["id"], join["id"]}

    resp = await client.patch(
        f"/api/v1/pools/respond/{join['id']}",
        json={"action": "reject"},
        headers=as_user(driver),
    )
    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_go_offline(client: AsyncClient, driver, offer_id):
    resp = await client.post(f"/api/v1/offers/{offer_id}/offline", headers=as_user(driver))
    assert resp.status_code == 200
    assert resp.json()["is_available"] is False

    resp = await client.get("/api/v1/offers", params={"available_only": True})
    assert resp.json() == []


@pytest.mark.asyncio
async def test_places_without_provider(client: AsyncClient):
    resp = await client.get("/api/v1/places", params={"q": "koramangala"})
    assert resp.status_code == 200
    assert resp.json() == []


@pytest.mark.asyncio
async def test_places_with_provider(session_factory, settings):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json=[{"display_name": "Koramangala", "lat": "12.9352", "lon": "77.6245"}],
        )

    routing = HttpRoutingProvider(
        "http://osrm.test",
        "http://nominatim.test",
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )
    services = build_services(
        session_factory,
        settings=settings,
        location_store=MemoryLocationStore(),
        routing=routing,
    )
    app = create_app(services=services, run_worker=False)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        resp = await ac.get("/api/v1/places", params={"q": "koramangala"})

    assert resp.status_code == 200
    assert resp.json() == [
        {"label": "Koramangala", "lat": 12.9352, "lng": 77.6245, "importance": 0.0}
    ]
    await services.aclose()
