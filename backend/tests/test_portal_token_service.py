from datetime import timedelta

import pytest
from sqlalchemy.exc import SQLAlchemyError

from tutorhub.config import settings
from tutorhub.exceptions import EntityNotFoundError, PortalTokenConfigError
from tutorhub.models import AuditLog, PortalAccessLog, PortalAccessToken
from tutorhub.services.portal_token_service import PortalTokenService
from tutorhub.utils.helpers import ensure_utc, new_uuid
from tutorhub.utils.portal_tokens import generate_portal_token, hash_token


@pytest.fixture
def service(db, clock):
    return PortalTokenService(db, clock=clock)


def active_tokens(db, entity_id):
    return db.query(PortalAccessToken).filter(
        PortalAccessToken.entity_id == entity_id,
        PortalAccessToken.is_revoked == False
    ).all()


def access_logs(db):
    return db.query(PortalAccessLog).order_by(PortalAccessLog.id).all()


def test_issue_stores_hash_and_verifies(db, service, student, center, admin_user):
    issued = service.issue("student", student.id, center.id, expires_in_days=30, created_by=admin_user.id, created_ip="10.0.0.1")

    claims = service.verify(issued.token)
    assert claims["type"] == "student"
    assert claims["entityId"] == student.id
    assert claims["centerId"] == center.id
    assert claims["exp"] - claims["iat"] == 30 * 86400

    row = db.query(PortalAccessToken).one()
    assert row.token_hash == hash_token(issued.token)
    assert row.token_hash != issued.token
    assert row.created_by == admin_user.id
    assert row.created_ip == "10.0.0.1"
    assert db.query(AuditLog).filter(AuditLog.action == "issue_token").count() == 1


def test_reissue_revokes_previous_token(db, service, student, center):
    first = service.issue("student", student.id, center.id)
    second = service.issue("student", student.id, center.id)

    assert second.revoked_count == 1
    active = active_tokens(db, student.id)
    assert len(active) == 1
    assert active[0].token_hash == second.token_hash

    decision = service.validate(first.token)
    assert not decision.valid
    assert decision.error == "Token has been revoked"


def test_issue_for_unknown_entity(service, center):
    with pytest.raises(EntityNotFoundError):
        service.issue("student", new_uuid(), center.id)


def test_issue_scoped_to_center(service, student, other_center):
    with pytest.raises(EntityNotFoundError):
        service.issue("student", student.id, other_center.id)


@pytest.mark.parametrize("days", [0, 366])
def test_issue_rejects_out_of_range_expiry(service, student, center, days):
    with pytest.raises(ValueError):
        service.issue("student", student.id, center.id, expires_in_days=days)


def test_issue_without_secret(monkeypatch, db, service, student, center):
    monkeypatch.setattr(settings, "PORTAL_JWT_SECRET", "short")

    with pytest.raises(PortalTokenConfigError):
        service.issue("student", student.id, center.id)
    assert db.query(PortalAccessToken).count() == 0


def test_issue_rolls_back_revocation_when_insert_fails(monkeypatch, db, service, student, center):
    first = service.issue("student", student.id, center.id)

    def failing_audit(*args, **kwargs):
        raise SQLAlchemyError("disk full")

    monkeypatch.setattr("tutorhub.services.portal_token_service.record_audit", failing_audit)

    with pytest.raises(SQLAlchemyError):
        service.issue("student", student.id, center.id)

    active = active_tokens(db, student.id)
    assert len(active) == 1
    assert active[0].token_hash == first.token_hash
    assert service.validate(first.token).valid


def test_validate_success_updates_usage(db, service, student, center, clock):
    issued = service.issue("student", student.id, center.id, expires_in_days=30)

    decision = service.validate(issued.token, ip_address="196.25.1.1", user_agent="pytest", page_path="/student")

    assert decision.valid
    assert decision.entity_type == "student"
    assert decision.entity_id == student.id
    assert decision.center_id == center.id
    assert decision.entity["full_name"] == "Thandi Nkosi"
    assert decision.entity["center"]["name"] == "Bright Minds Academy"
    assert decision.expires_at == issued.expires_at

    response = decision.to_response()
    assert response["valid"] is True
    assert response["entityName"] == "Thandi Nkosi"
    assert response["entityEmail"] == "thandi@example.com"

    row = db.query(PortalAccessToken).one()
    assert row.last_ip == "196.25.1.1"
    assert ensure_utc(row.last_used_at) == clock.now

    logs = access_logs(db)
    assert len(logs) == 1
    assert logs[0].access_granted is True
    assert logs[0].failure_reason is None
    assert logs[0].page_path == "/student"


def test_token_expires_after_thirty_days(service, student, center, clock):
    issued = service.issue("student", student.id, center.id, expires_in_days=30)

    decision = service.validate(issued.token)
    assert decision.valid
    assert abs((decision.expires_at - clock.now) - timedelta(days=30)) < timedelta(seconds=1)

    clock.advance(days=31)
    decision = service.validate(issued.token)
    assert not decision.valid
    assert "expired" in decision.error


def test_expired_token_rejected_before_storage_lookup(db, service, student, center, monkeypatch):
    token = generate_portal_token(
        "student", student.id, center.id,
        expires_in_days=30,
        issued_at=service._now() - timedelta(days=40)
    )

    def no_queries(*args, **kwargs):
        raise AssertionError("storage was queried")

    monkeypatch.setattr(db, "query", no_queries)

    decision = service.validate(token)

    assert not decision.valid
    assert decision.error == "Token has expired"
    monkeypatch.undo()
    assert access_logs(db)[-1].failure_reason == "Token expired"


def test_revoked_token_rejected(db, service, student, center):
    issued = service.issue("student", student.id, center.id)
    service.revoke("student", student.id, center.id)

    decision = service.validate(issued.token)

    assert not decision.valid
    assert decision.error == "Token has been revoked"
    assert access_logs(db)[-1].failure_reason == "Token revoked"


def test_stored_expiry_is_enforced(db, service, student, center, clock):
    issued = service.issue("student", student.id, center.id, expires_in_days=30)
    row = db.query(PortalAccessToken).one()
    row.expires_at = clock.now - timedelta(minutes=1)
    db.commit()

    decision = service.validate(issued.token)

    assert not decision.valid
    assert decision.error == "Token has expired"


def test_invalid_format_logged_without_claims(db, service):
    decision = service.validate("definitely not a jwt")

    assert not decision.valid
    assert decision.error == "Invalid token format"
    log = access_logs(db)[-1]
    assert log.failure_reason == "Invalid token format"
    assert log.entity_id is None
    assert log.access_granted is False


def test_type_mismatch(service, student, center):
    issued = service.issue("student", student.id, center.id)

    decision = service.validate(issued.token, expected_entity_type="teacher")

    assert not decision.valid
    assert decision.error == "Token type mismatch"


def test_inactive_entity(db, service, student, center):
    issued = service.issue("student", student.id, center.id)
    student.status = "withdrawn"
    db.commit()

    decision = service.validate(issued.token)

    assert not decision.valid
    assert decision.error == "Account is inactive"
    assert access_logs(db)[-1].failure_reason == "Entity inactive"


def test_deleted_entity(db, service, teacher, center):
    issued = service.issue("teacher", teacher.id, center.id)
    db.delete(teacher)
    db.commit()

    decision = service.validate(issued.token)

    assert not decision.valid
    assert decision.error == "Entity not found"


def test_every_validation_writes_one_log_row(db, service, student, center):
    issued = service.issue("student", student.id, center.id)

    service.validate(issued.token)
    service.validate("bad")
    service.validate(issued.token, expected_entity_type="parent")

    assert len(access_logs(db)) == 3


class TestUntrackedTokens:

    def make_untracked(self, student, center):
        return generate_portal_token("student", student.id, center.id)

    def test_accepted_while_compatibility_mode_is_open(self, monkeypatch, service, student, center, caplog):
        monkeypatch.setattr(settings, "PORTAL_ALLOW_UNTRACKED_TOKENS", True)
        monkeypatch.setattr(settings, "PORTAL_UNTRACKED_TOKENS_UNTIL", None)

        decision = service.validate(self.make_untracked(student, center))

        assert decision.valid
        assert "legacy compatibility mode" in caplog.text

    def test_rejected_after_cutoff(self, monkeypatch, service, student, center, clock):
        monkeypatch.setattr(settings, "PORTAL_ALLOW_UNTRACKED_TOKENS", True)
        monkeypatch.setattr(settings, "PORTAL_UNTRACKED_TOKENS_UNTIL", clock.now - timedelta(days=1))

        decision = service.validate(self.make_untracked(student, center))

        assert not decision.valid
        assert decision.error == "Token not recognized"

    def test_rejected_when_disabled(self, monkeypatch, db, service, student, center):
        monkeypatch.setattr(settings, "PORTAL_ALLOW_UNTRACKED_TOKENS", False)

        decision = service.validate(self.make_untracked(student, center))

        assert not decision.valid
        assert decision.error == "Token not recognized"
        assert access_logs(db)[-1].failure_reason == "Token not recognized"


def test_revoke_is_idempotent(service, student, center):
    service.issue("student", student.id, center.id)

    assert service.revoke("student", student.id, center.id) == 1
    assert service.revoke("student", student.id, center.id) == 0


def test_revoke_single_token(db, service, student, center):
    service.issue("student", student.id, center.id)
    token_id = db.query(PortalAccessToken).one().id

    assert service.revoke("student", student.id, center.id, token_id=new_uuid()) == 0
    assert service.revoke("student", student.id, center.id, token_id=token_id) == 1


def test_revoke_scoped_to_center(service, student, center, other_center):
    service.issue("student", student.id, center.id)

    assert service.revoke("student", student.id, other_center.id) == 0


def test_list_tokens_reports_state(service, student, center, clock):
    service.issue("student", student.id, center.id, expires_in_days=1)
    service.issue("student", student.id, center.id, expires_in_days=5)

    clock.advance(days=2)
    states = sorted(token["state"] for token in service.list_tokens("student", student.id, center.id))

    assert states == ["active", "revoked"]

    clock.advance(days=10)
    states = sorted(token["state"] for token in service.list_tokens("student", student.id, center.id))
    assert states == ["expired", "revoked"]
