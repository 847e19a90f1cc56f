"""
Alert API tests: lifecycle endpoints and error mapping
"""

import pytest
from fastapi.testclient import TestClient

from alert_triage.main import create_app

from conftest import ORG_ID


def headers(user_id="user-clin-1", role="CLINICIAN", organization_id=ORG_ID):
    return {
        "X-User-ID": user_id,
        "X-User-Role": role,
        "X-Organization-ID": organization_id,
    }


@pytest.fixture
def client(alert_engine):
    app = create_app(alert_engine)
    with TestClient(app) as test_client:
        yield test_client


class TestLifecycleEndpoints:

    def test_claim_returns_viewer_payload(self, client, make_alert):
        """Claiming returns the alert as seen by the claimer"""
        alert = make_alert()
        response = client.post(f"/api/alerts/{alert.id}/claim", headers=headers())

        assert response.status_code == 200
        data = response.json()
        assert data["claimedById"] == "user-clin-1"
        assert data["computed"]["isClaimedByMe"] is True

    def test_get_alert(self, client, make_alert):
        alert = make_alert(severity="HIGH")
        response = client.get(f"/api/alerts/{alert.id}", headers=headers())
        assert response.status_code == 200
        assert response.json()["severity"] == "HIGH"

    def test_resolve(self, client, make_alert, clinical_records):
        """Resolution with documentation and a follow-up task"""
        alert = make_alert()
        response = client.post(
            f"/api/alerts/{alert.id}/resolve",
            headers=headers(),
            json={
                "resolution_notes": "Medication adjusted by phone",
                "intervention_type": "MEDICATION_ADJUSTMENT",
                "patient_outcome": "IMPROVED",
                "time_spent_minutes": 20,
                "follow_up_title": "Check BP in 3 days",
            }
        )
        assert response.status_code == 200
        assert response.json()["status"] == "RESOLVED"
        assert clinical_records.follow_ups[0][3].title == "Check BP in 3 days"

    def test_snooze_and_suppress(self, client, make_alert):
        alert = make_alert()
        response = client.post(f"/api/alerts/{alert.id}/snooze", headers=headers(), json={"duration_minutes": 30})
        assert response.status_code == 200
        assert response.json()["snoozedUntil"] is not None

        response = client.post(
            f"/api/alerts/{alert.id}/suppress", headers=headers(), json={"reason": "FALSE_POSITIVE"}
        )
        assert response.status_code == 200
        assert response.json()["isSuppressed"] is True


class TestErrorMapping:

    def test_conflict_is_409(self, client, make_alert):
        """Claiming an alert someone else holds is a conflict"""
        alert = make_alert()
        client.post(f"/api/alerts/{alert.id}/claim", headers=headers())
        response = client.post(f"/api/alerts/{alert.id}/claim", headers=headers(user_id="user-clin-2"))

        assert response.status_code == 409
        body = response.json()
        assert body["type"] == "conflict"
        assert body["alert_id"] == alert.id
        assert "already claimed" in body["error"]

    def test_validation_is_400(self, client, make_alert):
        alert = make_alert()
        response = client.post(f"/api/alerts/{alert.id}/snooze", headers=headers(), json={"duration_minutes": 0})
        assert response.status_code == 400
        assert response.json()["type"] == "validation_error"

    def test_forbidden_is_403(self, client, make_alert):
        """Force-claim is limited to supervisory roles"""
        alert = make_alert()
        response = client.post(
            f"/api/alerts/{alert.id}/force-claim",
            headers=headers(),
            json={"reason": "Taking this one over"}
        )
        assert response.status_code == 403

    def test_supervisor_force_claim(self, client, make_alert):
        alert = make_alert()
        client.post(f"/api/alerts/{alert.id}/claim", headers=headers())
        response = client.post(
            f"/api/alerts/{alert.id}/force-claim",
            headers=headers(user_id="user-sup-1", role="CLINICAL_SUPERVISOR"),
            json={"reason": "Clinician went off shift"}
        )
        assert response.status_code == 200
        assert response.json()["claimedById"] == "user-sup-1"

    def test_other_organization_is_404(self, client, make_alert):
        alert = make_alert()
        response = client.get(f"/api/alerts/{alert.id}", headers=headers(organization_id="org-2"))
        assert response.status_code == 404
        assert response.json()["type"] == "not_found"

    def test_unauthenticated_is_401(self, client, make_alert):
        alert = make_alert()
        response = client.post(f"/api/alerts/{alert.id}/claim")
        assert response.status_code == 401


class TestHealth:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "scheduler_running": False, "live_streams": 0}
