from datetime import timedelta

import pytest
from jose import jwt

from tutorhub.config import settings
from tutorhub.exceptions import PortalTokenConfigError
from tutorhub.utils.helpers import new_uuid, utcnow
from tutorhub.utils.portal_tokens import (
    PortalTokenError,
    build_portal_url,
    decode_portal_token,
    decode_token_unsafe,
    generate_portal_token,
    get_jwt_secret,
    get_token_expiration_date,
    get_token_remaining_days,
    hash_token,
    is_portal_tokens_configured,
    is_token_expiring_soon,
    is_valid_token_format,
    verify_portal_token,
)


@pytest.mark.parametrize("entity_type", ["student", "teacher", "parent"])
@pytest.mark.parametrize("days", [1, 30, 365])
def test_generated_token_decodes_to_input_claims(entity_type, days):
    entity_id, center_id = new_uuid(), new_uuid()

    claims = decode_portal_token(generate_portal_token(entity_type, entity_id, center_id, expires_in_days=days))

    assert claims["type"] == entity_type
    assert claims["entityId"] == entity_id
    assert claims["centerId"] == center_id
    assert claims["exp"] - claims["iat"] == days * 86400


def test_token_format_check():
    token = generate_portal_token("student", new_uuid(), new_uuid())

    assert is_valid_token_format(token)
    assert not is_valid_token_format("not-a-token")
    assert not is_valid_token_format("a.b")
    assert not is_valid_token_format("a..c")
    assert not is_valid_token_format("a.b.c$")
    assert not is_valid_token_format(None)


def test_malformed_token_rejected_before_verification():
    with pytest.raises(PortalTokenError) as exc_info:
        decode_portal_token("abc.def")
    assert exc_info.value.reason == PortalTokenError.INVALID_FORMAT
    assert str(exc_info.value) == "Invalid token format"


def test_expired_token():
    token = generate_portal_token(
        "student", new_uuid(), new_uuid(),
        expires_in_days=30,
        issued_at=utcnow() - timedelta(days=31)
    )

    with pytest.raises(PortalTokenError) as exc_info:
        decode_portal_token(token)
    assert exc_info.value.reason == PortalTokenError.EXPIRED
    assert verify_portal_token(token) is None


def test_expiry_follows_supplied_clock():
    token = generate_portal_token("teacher", new_uuid(), new_uuid(), expires_in_days=30)

    assert decode_portal_token(token, now=utcnow() + timedelta(days=29))
    with pytest.raises(PortalTokenError) as exc_info:
        decode_portal_token(token, now=utcnow() + timedelta(days=31))
    assert exc_info.value.reason == PortalTokenError.EXPIRED


def test_tampered_signature_is_invalid():
    header, payload, signature = generate_portal_token("student", new_uuid(), new_uuid()).split(".")
    signature = ("B" if signature[0] == "A" else "A") + signature[1:]
    tampered = ".".join([header, payload, signature])

    with pytest.raises(PortalTokenError) as exc_info:
        decode_portal_token(tampered)
    assert exc_info.value.reason == PortalTokenError.INVALID


def test_token_signed_with_other_secret_is_invalid():
    now = int(utcnow().timestamp())
    forged = jwt.encode(
        {"type": "student", "entityId": new_uuid(), "centerId": new_uuid(), "iat": now, "exp": now + 3600},
        "some-other-secret-that-is-also-long-enough",
        algorithm="HS256"
    )
    assert verify_portal_token(forged) is None


def test_unexpected_claim_type_rejected():
    now = int(utcnow().timestamp())
    token = jwt.encode(
        {"type": "admin", "entityId": new_uuid(), "centerId": new_uuid(), "iat": now, "exp": now + 3600},
        settings.PORTAL_JWT_SECRET,
        algorithm="HS256"
    )
    with pytest.raises(PortalTokenError) as exc_info:
        decode_portal_token(token)
    assert exc_info.value.reason == PortalTokenError.INVALID_CLAIMS


def test_missing_claims_rejected():
    now = int(utcnow().timestamp())
    token = jwt.encode({"type": "student", "iat": now, "exp": now + 3600}, settings.PORTAL_JWT_SECRET, algorithm="HS256")
    with pytest.raises(PortalTokenError) as exc_info:
        decode_portal_token(token)
    assert exc_info.value.reason == PortalTokenError.INVALID_CLAIMS


def test_generate_rejects_unknown_entity_type():
    with pytest.raises(ValueError):
        generate_portal_token("admin", new_uuid(), new_uuid())


@pytest.mark.parametrize("secret", [None, "", "too-short"])
def test_unusable_secret_is_a_configuration_error(monkeypatch, secret):
    monkeypatch.setattr(settings, "PORTAL_JWT_SECRET", secret)

    with pytest.raises(PortalTokenConfigError):
        get_jwt_secret()
    with pytest.raises(PortalTokenConfigError):
        generate_portal_token("student", new_uuid(), new_uuid())
    assert not is_portal_tokens_configured()


def test_hash_token_is_sha256_hex():
    token = generate_portal_token("student", new_uuid(), new_uuid())
    digest = hash_token(token)

    assert len(digest) == 64
    assert digest == hash_token(token)
    assert digest != hash_token(token + "x")


def test_decode_token_unsafe_reads_claims_without_verifying():
    entity_id = new_uuid()
    token = generate_portal_token("student", entity_id, new_uuid(), issued_at=utcnow() - timedelta(days=90))

    assert decode_token_unsafe(token)["entityId"] == entity_id
    assert decode_token_unsafe("garbage") is None


def test_expiration_helpers():
    now = utcnow().replace(microsecond=0)
    claims = decode_portal_token(generate_portal_token("student", new_uuid(), new_uuid(), expires_in_days=10, issued_at=now))

    assert get_token_expiration_date(claims) == now + timedelta(days=10)
    assert get_token_remaining_days(claims, now=now) == 10
    assert get_token_remaining_days(claims, now=now + timedelta(days=11)) == 0
    assert not is_token_expiring_soon(claims, now=now)
    assert is_token_expiring_soon(claims, now=now + timedelta(days=4))


def test_build_portal_url():
    assert build_portal_url("student", "tok", base_url="https://app.example.com/") == "https://app.example.com/student/tok"
    assert build_portal_url("teacher", "tok", base_url="https://app.example.com") == "https://app.example.com/teacher/tok"
    assert build_portal_url("parent", "tok", base_url="https://app.example.com") == "https://app.example.com/parent"
