from tutorhub.models import PortalAccessLog, PortalAccessToken
from tutorhub.services.portal_token_service import PortalTokenService
from tutorhub.utils.helpers import new_uuid

from conftest import make_student


def generate(client, headers, entity_type, entity_id, **extra):
    payload = {"entityType": entity_type, "entityId": entity_id, **extra}
    return client.post("/api/portal/generate-token", json=payload, headers=headers)


class TestGenerateToken:

    def test_generate_for_student(self, client, login, admin_user, student):
        response = generate(client, login(admin_user), "student", student.id, expiresInDays=7)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["expiresInDays"] == 7
        assert body["portalUrl"] == f"http://localhost:3000/student/{body['token']}"
        assert body["expiresAt"].endswith("Z")

    def test_sends_link_by_sms_and_email(self, client, login, admin_user, teacher, sms_sender, email_sender):
        response = generate(client, login(admin_user), "teacher", teacher.id, sendNotification=True)

        assert response.status_code == 200
        portal_url = response.json()["portalUrl"]
        assert len(sms_sender.sent) == 1
        assert sms_sender.sent[0][1].startswith("Bright Minds Academy: Your portal access link is ready.")
        assert len(email_sender.sent) == 1
        to, subject, html_body = email_sender.sent[0]
        assert to == teacher.email
        assert subject == "Bright Minds Academy - Portal Access Link"
        assert portal_url in html_body

    def test_link_delivery_failure_does_not_fail_issue(self, client, login, admin_user, student, sms_sender, email_sender):
        sms_sender.outcomes[student.phone] = RuntimeError("gateway down")

        response = generate(client, login(admin_user), "student", student.id, sendNotification=True)

        assert response.status_code == 200
        assert len(email_sender.sent) == 1

    def test_entity_in_other_center(self, client, login, db, admin_user, other_center):
        outsider = make_student(db, other_center.id)

        response = generate(client, login(admin_user), "student", outsider.id)

        assert response.status_code == 404
        assert response.json()["detail"] == "Student not found"

    def test_parent_tokens_cannot_be_requested(self, client, login, admin_user, parent):
        response = generate(client, login(admin_user), "parent", parent.id)

        assert response.status_code == 400
        assert "Invalid entity type" in response.json()["error"]

    def test_bad_entity_id(self, client, login, admin_user):
        response = generate(client, login(admin_user), "student", "12345")

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid entity ID format"

    def test_expiry_out_of_range(self, client, login, admin_user, student):
        response = generate(client, login(admin_user), "student", student.id, expiresInDays=400)

        assert response.status_code == 400

    def test_requires_session(self, client, student):
        response = generate(client, {}, "student", student.id)

        assert response.status_code == 401


class TestValidateToken:

    def test_valid_token(self, client, login, db, admin_user, student):
        token = generate(client, login(admin_user), "student", student.id).json()["token"]

        response = client.post(
            "/api/portal/validate-token",
            json={"token": token, "entityType": "student", "pagePath": "/student-portal/grades"},
            headers={"User-Agent": "pytest-browser"}
        )

        assert response.status_code == 200
        body = response.json()
        assert body["valid"] is True
        assert body["entityId"] == student.id
        assert body["entityName"] == "Thandi Nkosi"
        assert body["entity"]["center"]["name"] == "Bright Minds Academy"

        log = db.query(PortalAccessLog).one()
        assert log.access_granted is True
        assert log.page_path == "/student-portal/grades"
        assert log.user_agent == "pytest-browser"

    def test_missing_token(self, client):
        response = client.post("/api/portal/validate-token", json={})

        assert response.status_code == 400
        assert response.json() == {"valid": False, "error": "Token is required"}

    def test_garbage_token(self, client, db):
        response = client.post("/api/portal/validate-token", json={"token": "not-a-jwt"})

        assert response.status_code == 200
        assert response.json()["valid"] is False
        assert db.query(PortalAccessLog).one().access_granted is False

    def test_type_mismatch(self, client, login, admin_user, student):
        token = generate(client, login(admin_user), "student", student.id).json()["token"]

        response = client.post("/api/portal/validate-token", json={"token": token, "entityType": "teacher"})

        assert response.json() == {"valid": False, "error": "Token type mismatch"}

    def test_revoked_token(self, client, login, admin_user, student):
        headers = login(admin_user)
        token = generate(client, headers, "student", student.id).json()["token"]
        client.post("/api/portal/revoke-token", json={"entityType": "student", "entityId": student.id}, headers=headers)

        response = client.post("/api/portal/validate-token", json={"token": token})

        assert response.json() == {"valid": False, "error": "Token has been revoked"}

    def test_service_failure_is_500(self, client, monkeypatch):
        def broken(self, *args, **kwargs):
            raise RuntimeError("database on fire")

        monkeypatch.setattr(PortalTokenService, "validate", broken)

        response = client.post("/api/portal/validate-token", json={"token": "x.y.z"})

        assert response.status_code == 500
        assert response.json() == {"valid": False, "error": "Validation failed"}


class TestRevokeAndList:

    def test_revoke_all_is_idempotent(self, client, login, admin_user, student):
        headers = login(admin_user)
        generate(client, headers, "student", student.id)
        payload = {"entityType": "student", "entityId": student.id}

        first = client.post("/api/portal/revoke-token", json=payload, headers=headers)
        second = client.post("/api/portal/revoke-token", json=payload, headers=headers)

        assert first.json() == {"success": True, "revokedCount": 1}
        assert second.json() == {"success": True, "revokedCount": 0}

    def test_single_token_requires_id(self, client, login, admin_user, student):
        response = client.post(
            "/api/portal/revoke-token",
            json={"entityType": "student", "entityId": student.id, "revokeAll": False},
            headers=login(admin_user)
        )

        assert response.status_code == 400

    def test_revoke_single_token(self, client, login, db, admin_user, student):
        headers = login(admin_user)
        generate(client, headers, "student", student.id)
        record = db.query(PortalAccessToken).one()

        response = client.post(
            "/api/portal/revoke-token",
            json={"entityType": "student", "entityId": student.id, "revokeAll": False, "tokenId": record.id},
            headers=headers
        )

        assert response.json()["revokedCount"] == 1

    def test_list_tokens(self, client, login, admin_user, student):
        headers = login(admin_user)
        generate(client, headers, "student", student.id)
        generate(client, headers, "student", student.id)

        response = client.get(f"/api/portal/tokens/student/{student.id}", headers=headers)

        assert response.status_code == 200
        states = sorted(token["state"] for token in response.json()["tokens"])
        assert states == ["active", "revoked"]

    def test_list_unknown_type(self, client, login, admin_user):
        response = client.get(f"/api/portal/tokens/robot/{new_uuid()}", headers=login(admin_user))

        assert response.status_code == 400
