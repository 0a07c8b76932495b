"""Credenciales: unicidad, firma y render del QR"""
import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from shared.utils.exceptions import CredentialEncodingError, InvalidCredential
from shared.utils.qr_generator import (
    decode_payload,
    derive_ticket_id,
    encode_payload,
    mint_credential,
    render_qr_png,
)

PNG_MAGIC = b"\x89PNG\r\n\x1a\n"


def _mint(sequence_number=1, timestamp=None, order_id=None, secret=None):
    return mint_credential(
        event_id=uuid.uuid4(),
        user_id=uuid.uuid4(),
        order_id=order_id or uuid.uuid4(),
        sequence_number=sequence_number,
        timestamp=timestamp or datetime(2026, 3, 1, 20, 0, tzinfo=timezone.utc),
        secret=secret,
    )


def test_ticket_id_is_deterministic():
    order_id = str(uuid.uuid4())
    assert derive_ticket_id(order_id, 1, 1000) == derive_ticket_id(order_id, 1, 1000)
    assert derive_ticket_id(order_id, 1, 1000) != derive_ticket_id(order_id, 2, 1000)
    assert derive_ticket_id(order_id, 1, 1000) != derive_ticket_id(order_id, 1, 1001)


def test_credentials_in_same_order_are_unique():
    order_id = uuid.uuid4()
    issued_at = datetime.now(timezone.utc)
    credentials = [_mint(sequence_number=seq, timestamp=issued_at, order_id=order_id) for seq in range(1, 6)]

    assert len({c.ticket_id for c in credentials}) == 5
    assert len({c.payload for c in credentials}) == 5


def test_same_sequence_at_different_instant_is_a_different_ticket():
    order_id = uuid.uuid4()
    now = datetime.now(timezone.utc)
    first = _mint(order_id=order_id, timestamp=now)
    second = _mint(order_id=order_id, timestamp=now + timedelta(milliseconds=1))

    assert first.ticket_id != second.ticket_id


def test_payload_carries_ticket_claims():
    credential = _mint(sequence_number=3)
    claims = decode_payload(credential.payload)

    assert claims["tid"] == str(credential.ticket_id)
    assert claims["oid"] == credential.order_id
    assert claims["eid"] == credential.event_id
    assert claims["uid"] == credential.user_id
    assert claims["seq"] == 3
    assert claims["iat"] == credential.issued_at_ms


def test_image_is_png():
    credential = _mint()
    assert credential.image_png.startswith(PNG_MAGIC)
    assert credential.data_url.startswith("data:image/png;base64,")


def test_tampered_payload_is_rejected():
    credential = _mint()
    body, signature = credential.payload.split(".")
    forged_body = encode_payload({"v": 1, "tid": str(uuid.uuid4())}, secret="otro").split(".")[0]

    with pytest.raises(InvalidCredential):
        decode_payload(f"{forged_body}.{signature}")


def test_payload_signed_with_other_secret_is_rejected():
    credential = _mint(secret="otro-secreto")
    with pytest.raises(InvalidCredential):
        decode_payload(credential.payload)


@pytest.mark.parametrize("payload", ["", "sin-punto", "a.b.c", "###.abc", "abc.éé"])
def test_malformed_payload_is_rejected(payload):
    with pytest.raises(InvalidCredential):
        decode_payload(payload)


def test_unsupported_version_is_rejected():
    payload = encode_payload({"v": 2, "tid": str(uuid.uuid4())})
    with pytest.raises(InvalidCredential):
        decode_payload(payload)


def test_encoding_failure_raises_credential_encoding_error():
    with patch("shared.utils.qr_generator.qrcode.QRCode", side_effect=RuntimeError("sin memoria")):
        with pytest.raises(CredentialEncodingError):
            render_qr_png("payload")

    with pytest.raises(CredentialEncodingError):
        render_qr_png("")
