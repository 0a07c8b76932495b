"""Verificación en puerta: autorización del oficial, log-as-state y log append-only"""
import uuid
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import select

from shared.database.models import (
    AppendOnlyViolation, Ticket, UserRole, VerificationAction, VerificationLog, VerificationOutcome,
)
from shared.utils.exceptions import Forbidden, InvalidCredential, NotFoundError
from shared.utils.qr_generator import encode_payload
from services.ticket_purchase.models.purchase import PurchaseRequest
from services.ticket_purchase.services.purchase_service import PurchaseService
from services.ticket_validation.models.ticket import TicketState, VerificationRequest
from services.ticket_validation.services.audit_service import AuditService
from services.ticket_validation.services.ticket_service import TicketValidationService

from conftest import claims_for, make_event, make_officer, make_user


async def _issue_ticket(db, event, buyer):
    service = PurchaseService(email_service=AsyncMock(**{"send_order_tickets_email.return_value": True}))
    result = await service.create_orders(
        db, claims_for(buyer), PurchaseRequest(items=[{"eventId": str(event.id)}])
    )
    return result["orders"][0]["tickets"][0]


def _request(ticket, event, action=VerificationAction.SCANNED, details=None):
    return VerificationRequest(credential=ticket["qr_code"], event_id=event.id, action=action, details=details)


async def _logs(db, ticket_id):
    stmt = select(VerificationLog).where(VerificationLog.ticket_id == uuid.UUID(ticket_id)).order_by(
        VerificationLog.created_at.asc()
    )
    return (await db.execute(stmt)).scalars().all()


@pytest.fixture
async def gate(db, organizer, buyer):
    """Evento A con un oficial asignado y un ticket emitido"""
    event = await make_event(db, organizer, title="Evento A")
    officer_user = await make_user(db, role=UserRole.SECURITY, name="Oficial")
    officer = await make_officer(db, officer_user, event)
    ticket = await _issue_ticket(db, event, buyer)
    return event, officer_user, officer, ticket


async def test_scan_logs_without_changing_state(db, gate):
    event, officer_user, officer, ticket = gate
    service = TicketValidationService()

    result = await service.verify(db, claims_for(officer_user), _request(ticket, event))

    assert result["previous_state"] == TicketState.ISSUED
    assert result["current_state"] == TicketState.ISSUED
    assert result["ticket_type"] == "General"
    assert result["event_title"] == "Evento A"
    [log] = await _logs(db, ticket["id"])
    assert log.action == VerificationAction.SCANNED.value
    assert log.officer_id == officer.id


async def test_entry_exit_cycle_is_derived_from_log(db, gate):
    event, officer_user, _, ticket = gate
    service = TicketValidationService()
    claims = claims_for(officer_user)

    states = []
    for action in (VerificationAction.ENTRY, VerificationAction.EXIT, VerificationAction.ENTRY,
                   VerificationAction.ENTRY):
        result = await service.verify(db, claims, _request(ticket, event, action=action))
        states.append((result["previous_state"], result["current_state"]))

    assert states == [
        (TicketState.ISSUED, TicketState.ENTERED),
        (TicketState.ENTERED, TicketState.EXITED),
        (TicketState.EXITED, TicketState.ENTERED),
        # Sin restricción de orden: un segundo ENTRY se registra igual
        (TicketState.ENTERED, TicketState.ENTERED),
    ]
    assert await AuditService.latest_state(db, uuid.UUID(ticket["id"])) == TicketState.ENTERED


async def test_log_timestamps_are_strictly_increasing(db, gate):
    event, officer_user, _, ticket = gate
    service = TicketValidationService()

    for _ in range(5):
        await service.verify(db, claims_for(officer_user), _request(ticket, event, action=VerificationAction.ENTRY))

    timestamps = [log.created_at for log in await _logs(db, ticket["id"])]
    assert all(earlier < later for earlier, later in zip(timestamps, timestamps[1:]))


async def test_marked_used_sets_flag(db, gate):
    event, officer_user, _, ticket = gate

    result = await TicketValidationService().verify(
        db, claims_for(officer_user), _request(ticket, event, action=VerificationAction.MARKED_USED)
    )

    assert result["is_used"] is True
    assert result["used_at"] is not None
    stored = (await db.execute(
        select(Ticket).where(Ticket.id == uuid.UUID(ticket["id"])).execution_options(populate_existing=True)
    )).scalar_one()
    assert stored.is_used is True


async def test_user_without_assignment_is_forbidden_and_not_logged(db, gate):
    event, _, _, ticket = gate
    stranger = await make_user(db, role=UserRole.SECURITY)

    with pytest.raises(Forbidden):
        await TicketValidationService().verify(db, claims_for(stranger), _request(ticket, event))

    assert await _logs(db, ticket["id"]) == []


async def test_officer_of_other_event_is_denied_and_logged(db, organizer, buyer):
    event_a = await make_event(db, organizer, title="Evento A")
    event_b = await make_event(db, organizer, title="Evento B")
    officer_user = await make_user(db, role=UserRole.SECURITY)
    officer = await make_officer(db, officer_user, event_a)
    ticket_b = await _issue_ticket(db, event_b, buyer)

    with pytest.raises(Forbidden):
        await TicketValidationService().verify(
            db, claims_for(officer_user), _request(ticket_b, event_a, action=VerificationAction.ENTRY)
        )

    [log] = await _logs(db, ticket_b["id"])
    assert log.outcome == VerificationOutcome.DENIED.value
    assert log.officer_id == officer.id
    assert log.event_id == event_a.id

    stored = (await db.execute(
        select(Ticket).where(Ticket.id == uuid.UUID(ticket_b["id"])).execution_options(populate_existing=True)
    )).scalar_one()
    assert stored.is_used is False
    assert stored.used_at is None
    # Un DENIED no cuenta como ingreso
    assert await AuditService.latest_state(db, stored.id) == TicketState.ISSUED


async def test_invalid_and_unknown_credentials(db, gate):
    event, officer_user, _, ticket = gate
    service = TicketValidationService()
    claims = claims_for(officer_user)

    with pytest.raises(InvalidCredential):
        await service.verify(db, claims, VerificationRequest(credential="basura", event_id=event.id))

    unknown = encode_payload({"v": 1, "tid": str(uuid.uuid4())})
    with pytest.raises(NotFoundError):
        await service.verify(db, claims, VerificationRequest(credential=unknown, event_id=event.id))


async def test_verification_log_is_append_only(db, gate):
    event, officer_user, _, ticket = gate
    await TicketValidationService().verify(db, claims_for(officer_user), _request(ticket, event))
    [log] = await _logs(db, ticket["id"])

    log.details = "editado"
    with pytest.raises(AppendOnlyViolation):
        await db.flush()
    await db.rollback()

    await db.delete(log)
    with pytest.raises(AppendOnlyViolation):
        await db.flush()
    await db.rollback()

    [log] = await _logs(db, ticket["id"])
    assert log.details is None


async def test_list_logs_filters_and_orders_chronologically(db, gate, organizer, buyer):
    event, officer_user, officer, ticket = gate
    other_ticket = await _issue_ticket(db, event, buyer)
    service = TicketValidationService()
    claims = claims_for(officer_user)

    await service.verify(db, claims, _request(ticket, event, action=VerificationAction.ENTRY))
    await service.verify(db, claims, _request(other_ticket, event, action=VerificationAction.ENTRY))
    await service.verify(db, claims, _request(ticket, event, action=VerificationAction.EXIT))

    by_event = await AuditService.list_logs(db, event_id=event.id)
    assert by_event["pagination"]["total"] == 3
    created = [entry["created_at"] for entry in by_event["logs"]]
    assert created == sorted(created)

    by_ticket = await AuditService.list_logs(db, ticket_id=uuid.UUID(ticket["id"]))
    assert [entry["action"] for entry in by_ticket["logs"]] == ["ENTRY", "EXIT"]

    by_officer = await AuditService.list_logs(db, officer_id=officer.id, limit=2)
    assert len(by_officer["logs"]) == 2
    assert by_officer["pagination"]["pages"] == 2


async def test_cached_summary_skips_lookup(db, gate):
    event, officer_user, _, ticket = gate
    cached = {
        "ticket_id": ticket["id"],
        "event_id": str(event.id),
        "order_id": ticket["order_id"],
        "ticket_type": "General (cache)",
        "event_title": "Evento A (cache)",
    }
    cache_get = AsyncMock(return_value=cached)
    cache_set = AsyncMock()

    with patch("services.ticket_validation.services.ticket_service.cache_get", cache_get), \
            patch("services.ticket_validation.services.ticket_service.cache_set", cache_set):
        result = await TicketValidationService().verify(db, claims_for(officer_user), _request(ticket, event))

    assert result["ticket_type"] == "General (cache)"
    assert result["event_title"] == "Evento A (cache)"
    assert cache_get.await_args.args[0].startswith("ticket:credential:")
    cache_set.assert_not_awaited()
