"""Integration tests for webhook ingestion and aggregate operations."""

from datetime import date, datetime

import pytest
from freezegun import freeze_time

from database import SessionLocal, as_utc
from models import Shipment
from modules.ndr.ndr_schema import (
    Ndr_attempt_create,
    Ndr_communication_create,
    Ndr_customer_response_update,
    Ndr_note_create,
    Ndr_reopen_request,
    Ndr_status_update,
    Ndr_webhook_event,
)
from utils.exception_handler import NotFoundError, PolicyViolation, ValidationError


def webhook_event(status, waybill="WB1001", scan_date="2026-10-18T10:00:00", nsl_code="EOD-74", instructions=None):
    return Ndr_webhook_event(
        waybill=waybill,
        status=status,
        nsl_code=nsl_code,
        scans=[
            {
                "date": scan_date,
                "location": "Mumbai_Hub",
                "status": status,
                "instructions": instructions,
            }
        ],
    )


def shipment_row(waybill):
    db = SessionLocal()
    try:
        return db.query(Shipment).filter(Shipment.waybill == waybill).one()
    finally:
        db.close()


@pytest.mark.integration
class TestWebhookIngestion:

    def test_first_ndr_webhook_opens_ndr(self, workflow, make_shipment):
        make_shipment(waybill="WB1001", client_id=3)

        ndr, created = workflow.ingest_webhook(
            webhook_event("Customer not available", instructions="Door locked")
        )

        assert created is True
        assert ndr.status == "new_ndr"
        assert ndr.client_id == 3
        assert ndr.attempt_count == 1
        assert ndr.reason_code == "EOD-74"
        assert ndr.reason_description == "Door locked"
        assert [entry.kind for entry in ndr.action_history] == ["webhook"]

        shipment = shipment_row("WB1001")
        assert shipment.is_ndr is True
        assert shipment.current_status == "ndr"
        assert shipment.courier_status == "Customer not available"

    def test_replayed_webhook_is_idempotent(self, workflow, store, make_shipment):
        make_shipment()
        event = webhook_event("Undelivered")

        first, _ = workflow.ingest_webhook(event)
        second, created = workflow.ingest_webhook(event)

        assert created is False
        reloaded = store.get("WB1001")
        assert reloaded.attempt_count == 1
        assert len(reloaded.action_history) == 1
        assert reloaded.version == first.version

    def test_second_failure_counts_an_attempt(self, workflow, make_shipment):
        make_shipment()
        workflow.ingest_webhook(webhook_event("Undelivered", scan_date="2026-10-17T10:00:00"))

        ndr, created = workflow.ingest_webhook(
            webhook_event("Undelivered", scan_date="2026-10-18T10:00:00")
        )

        assert created is False
        assert ndr.attempt_count == 2
        assert ndr.status == "new_ndr"
        assert ndr.next_attempt_date is not None

    def test_third_failure_clears_next_attempt(self, workflow, make_shipment):
        make_shipment()
        for day in (16, 17, 18):
            ndr, _ = workflow.ingest_webhook(
                webhook_event("Undelivered", scan_date="2026-10-{}T10:00:00".format(day))
            )

        assert ndr.attempt_count == 3
        assert ndr.next_attempt_date is None

    def test_failure_after_action_waits_for_customer(self, workflow, make_shipment, make_ndr):
        make_shipment()
        make_ndr(status="reattempt_scheduled", resolution_action="reattempt")

        ndr, _ = workflow.ingest_webhook(webhook_event("Undelivered"))

        assert ndr.status == "customer_response_pending"
        assert ndr.resolution_action is None
        assert ndr.attempt_count == 2

    def test_delivered_webhook_resolves(self, workflow, make_shipment, make_ndr):
        make_shipment()
        make_ndr(status="reattempt_scheduled")

        ndr, created = workflow.ingest_webhook(webhook_event("Delivered"))

        assert created is False
        assert ndr.status == "delivered"
        assert ndr.resolution_date is not None
        assert shipment_row("WB1001").is_ndr is False

    def test_rto_webhooks_progress(self, workflow, make_shipment, make_ndr):
        make_shipment()
        make_ndr()

        ndr, _ = workflow.ingest_webhook(webhook_event("RTO Initiated", scan_date="a"))
        assert ndr.status == "rto_initiated"
        assert ndr.rto_info["rto_status"] == "initiated"

        ndr, _ = workflow.ingest_webhook(webhook_event("RTO In Transit", scan_date="b"))
        assert ndr.status == "rto_in_transit"

        ndr, _ = workflow.ingest_webhook(webhook_event("RTO Delivered", scan_date="c"))
        assert ndr.status == "rto_delivered"
        assert ndr.rto_info["rto_status"] == "delivered"
        assert ndr.rto_info["rto_delivered_date"] is not None
        assert shipment_row("WB1001").is_ndr is False

    def test_webhook_on_terminal_ndr_is_recorded_only(self, workflow, make_shipment, make_ndr):
        make_shipment()
        make_ndr(status="delivered", attempt_count=2)

        ndr, _ = workflow.ingest_webhook(webhook_event("Undelivered"))

        assert ndr.status == "delivered"
        assert ndr.attempt_count == 2
        assert ndr.action_history[-1].from_status == "delivered"
        assert ndr.action_history[-1].to_status == "delivered"

    def test_non_ndr_status_without_ndr_is_ignored(self, workflow, make_shipment):
        make_shipment()

        ndr, created = workflow.ingest_webhook(webhook_event("In Transit"))

        assert ndr is None
        assert created is False
        assert shipment_row("WB1001").current_status == "in_transit"

    def test_scan_without_ndr_status_keeps_open_ndr_flagged(self, workflow, make_shipment):
        make_shipment()
        workflow.ingest_webhook(webhook_event("Undelivered", scan_date="a"))

        ndr, _ = workflow.ingest_webhook(webhook_event("In Transit", scan_date="b"))

        assert ndr.status == "new_ndr"
        shipment = shipment_row("WB1001")
        assert shipment.current_status == "in_transit"
        assert shipment.is_ndr is True

    def test_unknown_waybill(self, workflow):
        with pytest.raises(NotFoundError):
            workflow.ingest_webhook(webhook_event("Undelivered", waybill="WB-nope"))


@pytest.mark.integration
class TestCallerOperations:

    def test_record_attempt_creates_then_counts(self, workflow):
        payload = Ndr_attempt_create(waybill="WB6001", reason_code="EOD-15")

        ndr, created = workflow.record_attempt(payload, client_id=1)
        assert created is True
        assert ndr.attempt_count == 1

        ndr, created = workflow.record_attempt(
            Ndr_attempt_create(waybill="WB6001", remarks="Second try"), client_id=1
        )
        assert created is False
        assert ndr.attempt_count == 2
        assert ndr.action_history[-1].remarks == "Second try"

    def test_record_attempt_for_other_client(self, workflow, make_ndr):
        make_ndr(waybill="WB6002", client_id=9)

        with pytest.raises(NotFoundError):
            workflow.record_attempt(Ndr_attempt_create(waybill="WB6002"), client_id=1)

    def test_status_update_with_notes(self, workflow, make_ndr):
        make_ndr(status="reattempt_scheduled")

        ndr = workflow.update_status(
            "WB1001",
            Ndr_status_update(status="closed", resolution_action="reattempt", notes="done"),
            client_id=1,
        )

        assert ndr.status == "closed"
        assert ndr.resolution_action == "reattempt"
        assert ndr.resolution_notes == "done"
        assert ndr.resolution_date is not None
        assert ndr.action_history[-1].kind == "status"

    def test_close_unresolved_ndr_rejected(self, workflow, store, make_ndr):
        created = make_ndr()

        with pytest.raises(PolicyViolation):
            workflow.update_status("WB1001", Ndr_status_update(status="closed"), client_id=1)

        reloaded = store.get("WB1001")
        assert reloaded.status == "new_ndr"
        assert reloaded.version == created.version
        assert len(reloaded.action_history) == 1

    def test_communication_marks_contacted(self, workflow, make_ndr):
        make_ndr()

        ndr = workflow.record_communication(
            "WB1001",
            Ndr_communication_create(channel="call", status="answered", agent_name="Asha"),
            client_id=1,
        )

        assert ndr.status == "customer_contacted"
        entry = ndr.action_history[-1]
        assert entry.kind == "communication"
        assert entry.action == "call"
        assert entry.remarks == "answered - Asha"

    def test_customer_response_reschedule(self, workflow, make_ndr):
        make_ndr(status="customer_contacted")
        preferred = date(2026, 10, 25)

        ndr = workflow.update_customer_response(
            "WB1001",
            Ndr_customer_response_update(
                preference="reschedule",
                channel="call",
                updated_phone="9876543210",
                preferred_delivery_date=preferred,
            ),
            client_id=1,
        )

        assert ndr.status == "reattempt_scheduled"
        assert ndr.next_attempt_date == preferred
        assert ndr.customer_response["channel"] == "call"
        assert ndr.customer_response["updated_phone"] == "9876543210"

    def test_customer_cancel_starts_rto(self, workflow, make_ndr):
        make_ndr()

        ndr = workflow.update_customer_response(
            "WB1001", Ndr_customer_response_update(preference="cancel_order"), client_id=1
        )

        assert ndr.status == "rto_initiated"
        assert ndr.resolution_action == "rto"
        assert ndr.rto_info["rto_reason"] == "Customer cancelled order"

    def test_reopen_closed_ndr(self, workflow, make_ndr, make_shipment):
        make_shipment()
        make_ndr(status="closed")

        ndr = workflow.reopen("WB1001", Ndr_reopen_request(reason="Customer disputes"), client_id=1)

        assert ndr.status == "customer_response_pending"
        assert ndr.reopened_count == 1
        assert ndr.resolution_date is None
        assert ndr.action_history[-1].kind == "system"
        assert ndr.to_model().metrics.reopened_count == 1
        assert shipment_row("WB1001").is_ndr is True

    def test_reopen_needs_reason(self, workflow, make_ndr):
        make_ndr(status="closed")

        with pytest.raises(ValidationError):
            workflow.reopen("WB1001", Ndr_reopen_request(reason=""), client_id=1)

    def test_note_keeps_status_and_attempts(self, workflow, make_ndr):
        make_ndr(status="customer_contacted", attempt_count=2)

        ndr = workflow.add_note("WB1001", Ndr_note_create(note="VIP customer"), client_id=1)

        assert ndr.status == "customer_contacted"
        assert ndr.attempt_count == 2
        assert ndr.action_history[-1].kind == "note"
        assert ndr.action_history[-1].remarks == "VIP customer"


@pytest.mark.integration
class TestAttemptLimit:

    def test_customer_reattempt_after_three_attempts_rejected(self, workflow, store, make_ndr):
        created = make_ndr(status="customer_contacted", attempt_count=3)

        with pytest.raises(PolicyViolation) as exc:
            workflow.update_customer_response(
                "WB1001", Ndr_customer_response_update(preference="reattempt"), client_id=1
            )

        assert exc.value.message == "Maximum 3 attempts allowed. Please initiate RTO."
        reloaded = store.get("WB1001")
        assert reloaded.status == "customer_contacted"
        assert reloaded.customer_response is None
        assert reloaded.version == created.version

    def test_status_override_to_reattempt_after_three_attempts_rejected(self, workflow, store, make_ndr):
        make_ndr(status="customer_response_pending", attempt_count=3)

        with pytest.raises(PolicyViolation):
            workflow.update_status(
                "WB1001", Ndr_status_update(status="reattempt_scheduled"), client_id=1
            )

        assert store.get("WB1001").status == "customer_response_pending"

    def test_exhausted_ndr_can_still_be_returned(self, workflow, make_ndr):
        make_ndr(status="customer_contacted", attempt_count=3)

        ndr = workflow.update_customer_response(
            "WB1001", Ndr_customer_response_update(preference="cancel_order"), client_id=1
        )

        assert ndr.status == "rto_initiated"

    def test_second_attempt_may_still_be_rescheduled(self, workflow, make_ndr):
        make_ndr(status="customer_contacted", attempt_count=2)

        ndr = workflow.update_customer_response(
            "WB1001", Ndr_customer_response_update(preference="reschedule"), client_id=1
        )

        assert ndr.status == "reattempt_scheduled"


@pytest.mark.integration
class TestDerivedMetrics:

    def test_fresh_ndr(self, store, make_ndr):
        make_ndr()

        model = store.get("WB1001").to_model()

        assert model.metrics.escalation_level == "L1"
        assert model.metrics.first_contact_date is None
        assert model.auto_resolution.auto_rto_eligible is False
        assert model.auto_resolution.max_attempts_reached is False
        assert model.auto_resolution.aging_threshold_crossed is False

    def test_third_attempt_escalates(self, store, make_ndr):
        make_ndr(attempt_count=3)

        model = store.get("WB1001").to_model()

        assert model.metrics.escalation_level == "L2"
        assert model.auto_resolution.auto_rto_eligible is True
        assert model.auto_resolution.max_attempts_reached is True
        assert model.auto_resolution.aging_threshold_crossed is False

    @pytest.mark.parametrize(
        "days_old, rto_eligible, aging",
        [(6, False, False), (7, True, False), (10, True, True)],
    )
    def test_age_thresholds(self, store, make_ndr, days_old, rto_eligible, aging):
        make_ndr(days_old=days_old)

        flags = store.get("WB1001").to_model().auto_resolution

        assert flags.auto_rto_eligible is rto_eligible
        assert flags.aging_threshold_crossed is aging

    def test_contact_dates_follow_communications(self, workflow, make_ndr):
        make_ndr()
        call = Ndr_communication_create(channel="call", status="no answer")

        with freeze_time("2026-10-19 10:00:00"):
            workflow.record_communication("WB1001", call, client_id=1)
        with freeze_time("2026-10-20 15:30:00"):
            ndr = workflow.record_communication("WB1001", call, client_id=1)

        assert as_utc(ndr.first_contact_date) == as_utc(datetime(2026, 10, 19, 10, 0))
        assert as_utc(ndr.last_contact_date) == as_utc(datetime(2026, 10, 20, 15, 30))
        assert ndr.to_model().metrics.last_contact_date is not None
