"""Rutas HTTP: auth, códigos de estado y formato de errores"""
import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient

from main import app
from shared.auth.jwt_handler import create_access_token
from shared.database.session import get_db
from shared.database.models import UserRole
from services.ticket_purchase.routes.purchase import get_purchase_service

from conftest import make_event, make_officer, make_user


def _auth(user=None, role=None, user_id=None):
    claims = {
        "sub": str(user.id if user else user_id or uuid.uuid4()),
        "email": user.email if user else "anon@example.com",
        "role": role or (user.role if user else UserRole.USER.value),
    }
    return {"Authorization": f"Bearer {create_access_token(claims)}"}


@pytest.fixture
async def client(session_maker):
    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


async def test_purchase_requires_authentication(client):
    response = await client.post("/api/v1/orders", json={"items": [{"eventId": str(uuid.uuid4())}]})

    assert response.status_code == 401
    assert response.json()["error"] == "unauthenticated"
    assert response.headers["WWW-Authenticate"] == "Bearer"


async def test_purchase_with_invalid_token(client):
    response = await client.post(
        "/api/v1/orders",
        json={"items": [{"eventId": str(uuid.uuid4())}]},
        headers={"Authorization": "Bearer no-es-un-jwt"},
    )
    assert response.status_code == 401


async def test_purchase_and_list_orders(client, db, organizer, buyer):
    event = await make_event(db, organizer, ticket_types=(("General", "10000", 10),))

    response = await client.post(
        "/api/v1/orders",
        json={"items": [{"eventId": str(event.id), "quantity": 2}], "paymentMethod": "transfer"},
        headers=_auth(buyer),
    )

    assert response.status_code == 201
    body = response.json()
    assert body["partial_success"] is False
    assert len(body["orders"][0]["tickets"]) == 2
    assert body["orders"][0]["payment_method"] == "transfer"

    listing = await client.get("/api/v1/orders", headers=_auth(buyer))
    assert listing.status_code == 200
    assert [o["id"] for o in listing.json()["orders"]] == [body["orders"][0]["id"]]


async def test_purchase_partial_success(client, db, organizer, buyer):
    event = await make_event(db, organizer, ticket_types=(("General", "10000", 10),))

    response = await client.post(
        "/api/v1/orders",
        json={"items": [{"eventId": str(event.id)}, {"eventId": str(uuid.uuid4())}]},
        headers=_auth(buyer),
    )

    assert response.status_code == 201
    body = response.json()
    assert body["partial_success"] is True
    assert body["failed_items"][0]["index"] == 1
    assert body["failed_items"][0]["error"] == "not_found"


async def test_purchase_all_items_failing_returns_first_error(client, db, organizer, buyer):
    event = await make_event(db, organizer, ticket_types=(("VIP", "50000", 1),))

    response = await client.post(
        "/api/v1/orders",
        json={"items": [{"eventId": str(event.id), "quantity": 2}, {"eventId": str(uuid.uuid4())}]},
        headers=_auth(buyer),
    )

    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "insufficient_inventory"
    assert [f["error"] for f in body["failed_items"]] == ["insufficient_inventory", "not_found"]


async def test_malformed_cart_is_400(client, buyer):
    response = await client.post("/api/v1/orders", json={"items": []}, headers=_auth(buyer))

    assert response.status_code == 400
    assert response.json()["error"] == "validation_error"


async def test_unknown_order_status_filter_is_400(client, buyer):
    response = await client.get("/api/v1/orders?status=PAGADA", headers=_auth(buyer))
    assert response.status_code == 400


async def test_unexpected_error_is_generic_500(client, buyer):
    failing = AsyncMock()
    failing.create_orders.side_effect = RuntimeError("password=secreto en el DSN")
    app.dependency_overrides[get_purchase_service] = lambda: failing

    response = await client.post(
        "/api/v1/orders", json={"items": [{"eventId": str(uuid.uuid4())}]}, headers=_auth(buyer)
    )

    assert response.status_code == 500
    assert response.json() == {"error": "unexpected_error", "detail": "Error interno del servidor"}


async def test_event_lifecycle_and_verification(client, db, organizer, buyer):
    start = datetime.now(timezone.utc) + timedelta(days=3)
    created = await client.post(
        "/api/v1/events",
        json={
            "title": "Obra",
            "start_date": start.isoformat(),
            "end_date": (start + timedelta(hours=2)).isoformat(),
            "total_tickets": 5,
            "ticket_types": [{"name": "General", "price": "8000", "quantity": 5}],
        },
        headers=_auth(organizer),
    )
    assert created.status_code == 201
    event_id = created.json()["id"]

    officer_user = await make_user(db, role=UserRole.SECURITY)
    assigned = await client.post(
        f"/api/v1/events/{event_id}/officers",
        json={"user_id": str(officer_user.id)},
        headers=_auth(organizer),
    )
    assert assigned.status_code == 201

    purchase = await client.post(
        "/api/v1/orders", json={"items": [{"eventId": event_id}]}, headers=_auth(buyer)
    )
    credential = purchase.json()["orders"][0]["tickets"][0]["qr_code"]

    event = await client.get(f"/api/v1/events/{event_id}")
    assert event.json()["ticket_types"][0]["available"] == 4

    verified = await client.post(
        "/api/v1/verifications",
        json={"credential": credential, "event_id": event_id, "action": "ENTRY"},
        headers=_auth(officer_user),
    )
    assert verified.status_code == 200
    assert verified.json()["current_state"] == "ENTERED"

    not_officer = await client.post(
        "/api/v1/verifications",
        json={"credential": credential, "event_id": event_id, "action": "ENTRY"},
        headers=_auth(buyer),
    )
    assert not_officer.status_code == 403
    assert not_officer.json()["error"] == "forbidden"

    logs = await client.get(f"/api/v1/verifications/logs?event_id={event_id}", headers=_auth(organizer))
    assert logs.status_code == 200
    assert [entry["action"] for entry in logs.json()["logs"]] == ["ENTRY"]

    stranger_logs = await client.get(f"/api/v1/verifications/logs?event_id={event_id}", headers=_auth(buyer))
    assert stranger_logs.status_code == 403


async def test_create_event_requires_organizer(client, buyer):
    start = datetime.now(timezone.utc) + timedelta(days=3)
    response = await client.post(
        "/api/v1/events",
        json={
            "title": "Obra",
            "start_date": start.isoformat(),
            "end_date": (start + timedelta(hours=2)).isoformat(),
            "total_tickets": 5,
            "ticket_types": [{"name": "General", "price": "8000", "quantity": 5}],
        },
        headers=_auth(buyer),
    )
    assert response.status_code == 403


async def test_unknown_event_is_404(client):
    response = await client.get(f"/api/v1/events/{uuid.uuid4()}")
    assert response.status_code == 404
    assert response.json()["error"] == "not_found"


@pytest.mark.parametrize("credential", ["abc.def", "abc.éé"])
async def test_invalid_credential_is_400(client, db, organizer, credential):
    event = await make_event(db, organizer)
    officer_user = await make_user(db, role=UserRole.SECURITY)
    await make_officer(db, officer_user, event)

    response = await client.post(
        "/api/v1/verifications",
        json={"credential": credential, "event_id": str(event.id)},
        headers=_auth(officer_user),
    )

    assert response.status_code == 400
    assert response.json()["error"] == "invalid_credential"
