"""API tests through the FastAPI app with a mocked carrier."""

import pytest
from fastapi.testclient import TestClient

from main import app
from modules.ndr.ndr_service import get_ndr_service
from utils.jwt_token_handler import JWTHandler

WEBHOOK_URL = "/api/v1/webhook/courier/delhivery/ndr-status"


@pytest.fixture
def client(service):
    app.dependency_overrides[get_ndr_service] = lambda: service
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    token = JWTHandler.create_access_token({"id": 1, "client_id": 1})
    return {"Authorization": "Bearer " + token}


@pytest.mark.integration
class TestAuthentication:

    def test_missing_token_rejected(self, client):
        response = client.get("/api/v1/ndr/")
        assert response.status_code in (401, 403)

    def test_invalid_token_rejected(self, client):
        response = client.get("/api/v1/ndr/", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401

    def test_health_checks_are_open(self, client):
        assert client.get("/status").json() == {"status": "OK"}
        assert client.get("/deepstatus").json()["db"] is True


@pytest.mark.integration
class TestNdrQueries:

    def test_list_is_scoped_and_paginated(self, client, auth_headers, make_ndr):
        make_ndr(waybill="WB1101")
        make_ndr(waybill="WB1102")
        make_ndr(waybill="WB1103", client_id=2)

        response = client.get("/api/v1/ndr/?limit=1", headers=auth_headers)

        assert response.status_code == 200
        body = response.json()
        assert body["status"] is True
        assert len(body["data"]["ndrs"]) == 1
        assert body["data"]["pagination"]["total_count"] == 2
        assert body["data"]["pagination"]["has_next"] is True

    def test_limit_out_of_range(self, client, auth_headers):
        response = client.get("/api/v1/ndr/?limit=500", headers=auth_headers)
        assert response.status_code == 422

    def test_get_by_uuid(self, client, auth_headers, make_ndr):
        created = make_ndr(waybill="WB1201")

        response = client.get("/api/v1/ndr/{}".format(created.uuid), headers=auth_headers)

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["waybill"] == "WB1201"
        assert data["metrics"]["total_attempts"] == 1
        assert data["metrics"]["escalation_level"] == "L1"
        assert data["auto_resolution"]["auto_rto_eligible"] is False
        assert len(data["action_history"]) == 1

    def test_get_other_clients_ndr(self, client, auth_headers, make_ndr):
        make_ndr(waybill="WB1202", client_id=2)

        response = client.get("/api/v1/ndr/WB1202", headers=auth_headers)

        assert response.status_code == 404
        assert response.json()["status"] is False

    def test_statistics_endpoints(self, client, auth_headers, make_ndr):
        make_ndr(waybill="WB1301", days_old=9)

        overview = client.get("/api/v1/ndr/statistics/overview?period=30", headers=auth_headers)
        counts = client.get("/api/v1/ndr/statistics/counts", headers=auth_headers)
        escalations = client.get("/api/v1/ndr/escalations?threshold_days=7", headers=auth_headers)

        assert overview.json()["data"]["total"] == 1
        assert counts.json()["data"]["action_required"] == 1
        assert escalations.json()["data"]["count"] == 1
        assert escalations.json()["data"]["ndrs"][0]["waybill"] == "WB1301"


@pytest.mark.integration
class TestNdrWrites:

    def test_record_attempt_created(self, client, auth_headers):
        response = client.post(
            "/api/v1/ndr/attempts",
            json={"waybill": "WB1401", "reason_code": "EOD-74"},
            headers=auth_headers,
        )

        assert response.status_code == 201
        assert response.json()["data"]["status"] == "new_ndr"

    def test_status_transition_rejected(self, client, auth_headers, make_ndr):
        make_ndr(waybill="WB1402")

        response = client.patch(
            "/api/v1/ndr/WB1402/status", json={"status": "closed"}, headers=auth_headers
        )

        assert response.status_code == 400
        assert "cannot be closed" in response.json()["message"]

    def test_customer_response_rejects_unknown_fields(self, client, auth_headers, make_ndr):
        make_ndr(waybill="WB1403")

        response = client.patch(
            "/api/v1/ndr/WB1403/customer-response",
            json={"preference": "reattempt", "status": "closed"},
            headers=auth_headers,
        )

        assert response.status_code == 422

    def test_customer_response_accepted(self, client, auth_headers, make_ndr):
        make_ndr(waybill="WB1404")

        response = client.patch(
            "/api/v1/ndr/WB1404/customer-response",
            json={"preference": "change_address", "updated_address": "12 MG Road"},
            headers=auth_headers,
        )

        assert response.status_code == 200
        assert response.json()["data"]["status"] == "address_updated"

    def test_communication_note_and_reopen(self, client, auth_headers, make_ndr):
        make_ndr(waybill="WB1405", status="delivered")

        note = client.post(
            "/api/v1/ndr/WB1405/notes", json={"note": "Checked POD"}, headers=auth_headers
        )
        communication = client.post(
            "/api/v1/ndr/WB1405/communications", json={"channel": "sms"}, headers=auth_headers
        )
        reopen = client.post(
            "/api/v1/ndr/WB1405/reopen", json={"reason": "Customer says not received"}, headers=auth_headers
        )

        assert note.status_code == 200
        assert communication.status_code == 400
        assert reopen.status_code == 200
        assert reopen.json()["data"]["status"] == "customer_response_pending"
        assert reopen.json()["data"]["metrics"]["reopened_count"] == 1


@pytest.mark.integration
class TestCarrierActions:

    def test_single_action(self, client, auth_headers, carrier, make_ndr):
        make_ndr(waybill="WB1501")

        response = client.post(
            "/api/v1/ndr/action",
            json={"waybill": "WB1501", "action": "RE-ATTEMPT"},
            headers=auth_headers,
        )

        assert response.status_code == 200
        assert response.json()["data"]["correlation_id"] == "REQ-1"

    def test_action_denied_after_three_attempts(self, client, auth_headers, carrier, make_ndr):
        make_ndr(waybill="WB1502", attempt_count=3)

        response = client.post(
            "/api/v1/ndr/action",
            json={"waybill": "WB1502", "action": "RE-ATTEMPT"},
            headers=auth_headers,
        )

        assert response.status_code == 400
        assert response.json()["message"] == "Maximum 3 attempts allowed. Please initiate RTO."
        carrier.take_ndr_action.assert_not_called()

    def test_carrier_failure_is_bad_gateway(self, client, auth_headers, carrier, make_ndr):
        from utils.exception_handler import ExternalServiceError

        make_ndr(waybill="WB1503")
        carrier.take_ndr_action.side_effect = ExternalServiceError("Carrier did not respond")

        response = client.post(
            "/api/v1/ndr/action",
            json={"waybill": "WB1503", "action": "RE-ATTEMPT"},
            headers=auth_headers,
        )

        assert response.status_code == 502

    def test_bulk_action_partial_failure(self, client, auth_headers, make_ndr):
        make_ndr(waybill="WB1601")
        make_ndr(waybill="WB1602", attempt_count=3)

        response = client.post(
            "/api/v1/ndr/bulk-action",
            json={"waybills": ["WB1601", "WB1602"], "action": "RE-ATTEMPT"},
            headers=auth_headers,
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["total"] == 2
        assert data["succeeded"] == 1
        assert data["failed"] == 1
        assert [item["id"] for item in data["items"]] == ["WB1601", "WB1602"]

    def test_bulk_action_size_limit(self, client, auth_headers):
        response = client.post(
            "/api/v1/ndr/bulk-action",
            json={"waybills": ["WB{}".format(i) for i in range(101)], "action": "RE-ATTEMPT"},
            headers=auth_headers,
        )
        assert response.status_code == 422

    def test_rto(self, client, auth_headers, carrier, make_ndr):
        make_ndr(waybill="WB1701", attempt_count=3)

        response = client.post(
            "/api/v1/ndr/WB1701/rto", json={"reason": "Exhausted attempts"}, headers=auth_headers
        )

        assert response.status_code == 200
        assert response.json()["data"]["status"] == "rto_initiated"
        carrier.initiate_rto.assert_called_once_with("WB1701", "Exhausted attempts")

    def test_poll_status(self, client, auth_headers, carrier, dispatcher, make_ndr):
        make_ndr(waybill="WB1901")
        dispatcher.dispatch("WB1901", "RE-ATTEMPT", client_id=1)
        carrier.get_ndr_status.return_value = {"status": "SUCCESS", "waybills": []}

        response = client.get("/api/v1/ndr/status/REQ-1", headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["data"]["status"] == "SUCCESS"
        assert response.json()["data"]["updated_entries"] == 1

    def test_poll_status_of_other_clients_request(self, client, auth_headers, carrier, dispatcher, make_ndr):
        make_ndr(waybill="WB1902", client_id=2)
        dispatcher.dispatch("WB1902", "RE-ATTEMPT", client_id=2)

        response = client.get("/api/v1/ndr/status/REQ-1", headers=auth_headers)

        assert response.status_code == 404
        carrier.get_ndr_status.assert_not_called()


@pytest.mark.integration
class TestCarrierWebhook:

    def payload(self, status="Undelivered", waybill="WB1801"):
        return {
            "waybill": waybill,
            "status": status,
            "nsl_code": "EOD-74",
            "scans": [
                {
                    "date": "2026-10-18T10:00:00",
                    "location": "Pune_Hub",
                    "status": status,
                    "instructions": "Consignee unavailable",
                }
            ],
        }

    def test_webhook_needs_no_token(self, client, make_shipment):
        make_shipment(waybill="WB1801")

        first = client.post(WEBHOOK_URL, json=self.payload())
        replay = client.post(WEBHOOK_URL, json=self.payload())

        assert first.status_code == 200
        assert first.json()["data"]["created"] is True
        assert replay.status_code == 200
        assert replay.json()["data"]["created"] is False
        assert replay.json()["data"]["ndr_status"] == "new_ndr"

    def test_unknown_waybill(self, client):
        response = client.post(WEBHOOK_URL, json=self.payload(waybill="WB-unknown"))
        assert response.status_code == 404

    def test_malformed_payload(self, client):
        response = client.post(WEBHOOK_URL, json={"status": "Undelivered"})
        assert response.status_code == 422
