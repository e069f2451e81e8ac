"""Background polling of carrier requests that are still pending."""

from unittest.mock import MagicMock, patch

import pytest

from modules.ndr.ndr_tasks import poll_ndr_action_status, poll_pending_ndr_actions
from utils.exception_handler import ExternalServiceError


@pytest.fixture
def patched_service(dispatcher):
    service = MagicMock()
    service.dispatcher = dispatcher
    with patch("modules.ndr.ndr_tasks.get_ndr_service", return_value=service):
        yield service


@pytest.mark.integration
class TestPollingTasks:

    def test_poll_pending_reconciles_every_request(self, patched_service, dispatcher, carrier, store, make_ndr):
        make_ndr(waybill="WB2101")
        dispatcher.dispatch("WB2101", "RE-ATTEMPT", client_id=1)
        carrier.get_ndr_status.return_value = {"status": "SUCCESS", "waybills": ["WB2101"]}

        result = poll_pending_ndr_actions(limit=10)

        assert result == {"polled": 1, "failed": 0}
        assert store.get("WB2101").action_history[-1].external_status == "SUCCESS"

    def test_carrier_failure_is_counted(self, patched_service, dispatcher, carrier, store, make_ndr):
        make_ndr(waybill="WB2102")
        dispatcher.dispatch("WB2102", "RE-ATTEMPT", client_id=1)
        carrier.get_ndr_status.side_effect = ExternalServiceError("Carrier did not respond")

        result = poll_pending_ndr_actions(limit=10)

        assert result == {"polled": 0, "failed": 1}
        assert store.get("WB2102").action_history[-1].external_status == "PENDING"

    def test_nothing_pending(self, patched_service, carrier):
        assert poll_pending_ndr_actions() == {"polled": 0, "failed": 0}
        carrier.get_ndr_status.assert_not_called()

    def test_single_request_poll(self, patched_service, carrier):
        carrier.get_ndr_status.return_value = {"status": "FAILURE", "waybills": []}

        result = poll_ndr_action_status.run("REQ-77")

        assert result["status"] == "FAILURE"
        assert result["updated_entries"] == 0
