# ==== SHARED TEST FIXTURES AND CONFIGURATION ==== #

"""
Shared fixtures for the NDR service tests.

The environment is forced before any app module is imported: the engine,
the JWT settings and the limiter all read it at import time. Tests run on a
throwaway SQLite file so concurrent writers exercise real row versioning.
"""

import os
import tempfile
from datetime import timedelta
from unittest.mock import MagicMock


# ==== FORCE ENVIRONMENT SETUP BEFORE ANY IMPORTS ==== #

_TEST_DIR = tempfile.mkdtemp(prefix="ndr-tests-")

os.environ.update({
    "DATABASE_URL": "sqlite:///{}".format(os.path.join(_TEST_DIR, "ndr.db")),
    "LOG_FILE": os.path.join(_TEST_DIR, "ndr.log"),
    "LOG_LEVEL": "WARNING",
    "RATE_LIMIT_ENABLED": "false",
    "JWT_SECRET": "test-secret-key-for-testing-only",
    "DELHIVERY_API_URL": "http://mock-delhivery",
    "DELHIVERY_API_TOKEN": "test-token",
    "NDR_BULK_USE_BATCH_API": "false",
})

import pytest

# Now import app modules after environment is set
from database import SessionLocal, init_models, time_now
from models import Ndr, Ndr_history, Shipment
from modules.ndr.ndr_dispatcher import ActionDispatcher
from modules.ndr.ndr_service import NdrService
from modules.ndr.ndr_statistics import NdrStatistics
from modules.ndr.ndr_store import NdrStore, history_entry
from modules.ndr.ndr_workflow import NdrWorkflow
from shipping_partner.delhivery.delhivery import Delhivery


init_models()


# ==== DATABASE FIXTURES ==== #


@pytest.fixture(autouse=True)
def clean_tables():
    """Every test starts from empty tables."""
    yield
    db = SessionLocal()
    try:
        db.query(Ndr_history).delete()
        db.query(Ndr).delete()
        db.query(Shipment).delete()
        db.commit()
    finally:
        db.close()


@pytest.fixture
def store():
    return NdrStore()


@pytest.fixture
def make_shipment():
    def _make(waybill="WB1001", client_id=1, order_reference="ORD-1001"):
        db = SessionLocal()
        try:
            shipment = Shipment(
                waybill=waybill,
                client_id=client_id,
                order_reference=order_reference,
                current_status="in_transit",
                is_ndr=False,
            )
            db.add(shipment)
            db.commit()
            return shipment
        finally:
            db.close()

    return _make


@pytest.fixture
def make_ndr():
    """Insert an NDR directly, bypassing the workflow."""

    def _make(
        waybill="WB1001",
        client_id=1,
        status="new_ndr",
        reason_code="EOD-74",
        attempt_count=1,
        days_old=0,
        **fields
    ):
        now = time_now()
        db = SessionLocal()
        try:
            ndr = Ndr(
                waybill=waybill,
                client_id=client_id,
                order_reference="ORD-" + waybill,
                reason_code=reason_code,
                reason_description="Customer not available",
                status=status,
                attempt_count=attempt_count,
                ndr_date=now - timedelta(days=days_old),
                last_attempt_date=now - timedelta(days=days_old),
                reopened_count=0,
                **fields
            )
            ndr.action_history.append(
                history_entry(
                    kind="attempt",
                    action="delivery_attempt_failed",
                    to_status=status,
                    remarks="Attempt 1",
                )
            )
            db.add(ndr)
            db.commit()
            return ndr
        finally:
            db.close()

    return _make


# ==== CARRIER FIXTURES ==== #


@pytest.fixture
def carrier():
    """Delhivery client double that accepts every request."""
    mock_carrier = MagicMock(spec=Delhivery)
    mock_carrier.take_ndr_action.return_value = {
        "success": True,
        "request_id": "REQ-1",
    }
    mock_carrier.bulk_ndr_action.return_value = {
        "success": True,
        "request_id": "BULK-1",
        "processed_count": 0,
    }
    mock_carrier.initiate_rto.return_value = {
        "success": True,
        "message": "RTO initiated successfully",
    }
    mock_carrier.get_ndr_status.return_value = {
        "status": "SUCCESS",
        "waybills": [],
    }
    return mock_carrier


# ==== SERVICE FIXTURES ==== #


@pytest.fixture
def workflow(store):
    return NdrWorkflow(store=store)


@pytest.fixture
def dispatcher(store, carrier):
    return ActionDispatcher(store=store, carrier=carrier, max_workers=4)


@pytest.fixture
def statistics(store):
    return NdrStatistics(store=store)


@pytest.fixture
def service(store, workflow, dispatcher, statistics):
    return NdrService(
        store=store, workflow=workflow, dispatcher=dispatcher, statistics=statistics
    )
