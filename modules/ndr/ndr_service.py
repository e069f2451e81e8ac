import http
from functools import lru_cache
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError

from context_manager.context import context_user_data

from logger import logger

# schema
from schema.base import GenericResponseModel
from modules.ndr.ndr_schema import (
    Bulk_Item_Outcome_Model,
    Bulk_Ndr_action_request,
    Ndr_action_request,
    Ndr_attempt_create,
    Ndr_communication_create,
    Ndr_customer_response_update,
    Ndr_filters,
    Ndr_note_create,
    Ndr_reopen_request,
    Ndr_rto_request,
    Ndr_status_update,
    Ndr_Summary_Model,
    Ndr_webhook_event,
)

# services
from modules.ndr.ndr_dispatcher import ActionDispatcher
from modules.ndr.ndr_statistics import NdrStatistics
from modules.ndr.ndr_store import NdrStore
from modules.ndr.ndr_workflow import NdrWorkflow

from utils.exception_handler import NdrError


class NdrService:
    """
    Entry point for the NDR API. Every method returns a GenericResponseModel;
    NdrErrors become their own status code and message, database failures a
    500.
    """

    def __init__(
        self,
        store: Optional[NdrStore] = None,
        workflow: Optional[NdrWorkflow] = None,
        dispatcher: Optional[ActionDispatcher] = None,
        statistics: Optional[NdrStatistics] = None,
    ):
        self.store = store or NdrStore()
        self.workflow = workflow or NdrWorkflow(store=self.store)
        self.dispatcher = dispatcher or ActionDispatcher(store=self.store)
        self.statistics = statistics or NdrStatistics(store=self.store)

    @staticmethod
    def _run(operation: str, call: Callable[[], GenericResponseModel]) -> GenericResponseModel:
        try:
            return call()

        except NdrError as e:
            logger.warning(
                extra=context_user_data.get(),
                msg="{} rejected with {}: {}".format(
                    operation, type(e).__name__, e.message
                ),
            )
            return e.to_response()

        except SQLAlchemyError as e:
            # Log database error
            logger.error(
                extra=context_user_data.get(),
                msg="Database error in {}: {}".format(operation, str(e)),
            )
            return GenericResponseModel(
                status_code=http.HTTPStatus.INTERNAL_SERVER_ERROR,
                message="An error occurred while processing the NDR.",
            )

    # ============================================
    # QUERIES
    # ============================================

    def list_ndrs(self, ndr_filters: Ndr_filters, client_id: int) -> GenericResponseModel:
        def call():
            items, total = self.store.list(
                client_id=client_id,
                status=ndr_filters.status,
                reason_code=ndr_filters.reason_code,
                attempts_min=ndr_filters.attempts_min,
                attempts_max=ndr_filters.attempts_max,
                date_from=ndr_filters.date_from,
                date_to=ndr_filters.date_to,
                search=ndr_filters.search,
                page=ndr_filters.page,
                limit=ndr_filters.limit,
            )
            pages = (total + ndr_filters.limit - 1) // ndr_filters.limit
            return GenericResponseModel(
                status_code=http.HTTPStatus.OK,
                status=True,
                message="NDRs fetched successfully",
                data={
                    "ndrs": [
                        Ndr_Summary_Model.model_validate(ndr) for ndr in items
                    ],
                    "pagination": {
                        "current_page": ndr_filters.page,
                        "total_pages": pages,
                        "total_count": total,
                        "limit": ndr_filters.limit,
                        "has_next": ndr_filters.page < pages,
                        "has_prev": ndr_filters.page > 1,
                    },
                },
            )

        return self._run("list_ndrs", call)

    def get_ndr(self, identifier: str, client_id: int) -> GenericResponseModel:
        def call():
            ndr = self.store.get(identifier, client_id)
            return GenericResponseModel(
                status_code=http.HTTPStatus.OK,
                status=True,
                message="NDR fetched successfully",
                data=ndr.to_model(),
            )

        return self._run("get_ndr", call)

    # ============================================
    # AGGREGATE UPDATES
    # ============================================

    def _ndr_response(self, ndr, message: str, status_code=http.HTTPStatus.OK) -> GenericResponseModel:
        return GenericResponseModel(
            status_code=status_code,
            status=True,
            message=message,
            data=ndr.to_model(),
        )

    def update_status(self, identifier: str, payload: Ndr_status_update, client_id: int) -> GenericResponseModel:
        return self._run(
            "update_status",
            lambda: self._ndr_response(
                self.workflow.update_status(identifier, payload, client_id),
                "NDR status updated successfully",
            ),
        )

    def record_attempt(self, payload: Ndr_attempt_create, client_id: int) -> GenericResponseModel:
        def call():
            ndr, created = self.workflow.record_attempt(payload, client_id)
            return self._ndr_response(
                ndr,
                "NDR created" if created else "Delivery attempt recorded",
                http.HTTPStatus.CREATED if created else http.HTTPStatus.OK,
            )

        return self._run("record_attempt", call)

    def record_communication(self, identifier: str, payload: Ndr_communication_create, client_id: int) -> GenericResponseModel:
        return self._run(
            "record_communication",
            lambda: self._ndr_response(
                self.workflow.record_communication(identifier, payload, client_id),
                "Communication recorded",
            ),
        )

    def update_customer_response(self, identifier: str, payload: Ndr_customer_response_update, client_id: int) -> GenericResponseModel:
        return self._run(
            "update_customer_response",
            lambda: self._ndr_response(
                self.workflow.update_customer_response(identifier, payload, client_id),
                "Customer response updated successfully",
            ),
        )

    def reopen(self, identifier: str, payload: Ndr_reopen_request, client_id: int) -> GenericResponseModel:
        return self._run(
            "reopen",
            lambda: self._ndr_response(
                self.workflow.reopen(identifier, payload, client_id),
                "NDR reopened",
            ),
        )

    def add_note(self, identifier: str, payload: Ndr_note_create, client_id: int) -> GenericResponseModel:
        return self._run(
            "add_note",
            lambda: self._ndr_response(
                self.workflow.add_note(identifier, payload, client_id),
                "Note added",
            ),
        )

    def ingest_webhook(self, event: Ndr_webhook_event) -> GenericResponseModel:
        def call():
            ndr, created = self.workflow.ingest_webhook(event)
            return GenericResponseModel(
                status_code=http.HTTPStatus.OK,
                status=True,
                message="Webhook processed",
                data={
                    "waybill": event.waybill,
                    "ndr_id": str(ndr.uuid) if ndr is not None else None,
                    "ndr_status": ndr.status if ndr is not None else None,
                    "created": created,
                },
            )

        return self._run("ingest_webhook", call)

    # ============================================
    # CARRIER ACTIONS
    # ============================================

    def take_action(self, payload: Ndr_action_request, client_id: int) -> GenericResponseModel:
        def call():
            result = self.dispatcher.dispatch(
                payload.waybill, payload.action, payload.reason, client_id
            )
            return GenericResponseModel(
                status_code=http.HTTPStatus.OK,
                status=True,
                message="{} initiated successfully".format(result.action),
                data=result.to_dict(),
            )

        return self._run("take_action", call)

    def bulk_action(self, payload: Bulk_Ndr_action_request, client_id: int) -> GenericResponseModel:
        def call():
            outcomes = self.dispatcher.dispatch_bulk(
                payload.waybills, payload.action, payload.reason, client_id
            )
            succeeded = sum(1 for outcome in outcomes if outcome.success)
            return GenericResponseModel(
                status_code=http.HTTPStatus.OK,
                status=True,
                message="Bulk {} processed: {} succeeded, {} failed".format(
                    payload.action, succeeded, len(outcomes) - succeeded
                ),
                data={
                    "total": len(outcomes),
                    "succeeded": succeeded,
                    "failed": len(outcomes) - succeeded,
                    "items": [
                        Bulk_Item_Outcome_Model(**outcome.to_dict())
                        for outcome in outcomes
                    ],
                },
            )

        return self._run("bulk_action", call)

    def initiate_rto(self, identifier: str, payload: Ndr_rto_request, client_id: int) -> GenericResponseModel:
        def call():
            result = self.dispatcher.initiate_rto(identifier, payload.reason, client_id)
            return self._ndr_response(
                self.store.get(result.waybill, client_id), "RTO initiated successfully"
            )

        return self._run("initiate_rto", call)

    def poll_status(self, correlation_id: str, client_id: Optional[int] = None) -> GenericResponseModel:
        def call():
            return GenericResponseModel(
                status_code=http.HTTPStatus.OK,
                status=True,
                message="NDR status fetched successfully",
                data=self.dispatcher.poll_status(correlation_id, client_id),
            )

        return self._run("poll_status", call)

    # ============================================
    # STATISTICS
    # ============================================

    def overview(self, period_days: int, client_id: int) -> GenericResponseModel:
        return self._run(
            "overview",
            lambda: GenericResponseModel(
                status_code=http.HTTPStatus.OK,
                status=True,
                message="NDR overview fetched successfully",
                data=self.statistics.overview(period_days, client_id),
            ),
        )

    def counts(self, client_id: int) -> GenericResponseModel:
        return self._run(
            "counts",
            lambda: GenericResponseModel(
                status_code=http.HTTPStatus.OK,
                status=True,
                message="NDR counts fetched successfully",
                data=self.statistics.counts(client_id),
            ),
        )

    def escalations(self, threshold_days: int, client_id: int) -> GenericResponseModel:
        def call():
            candidates = self.statistics.escalation_candidates(threshold_days, client_id)
            return GenericResponseModel(
                status_code=http.HTTPStatus.OK,
                status=True,
                message="Escalation candidates fetched successfully",
                data={
                    "threshold_days": threshold_days,
                    "count": len(candidates),
                    "ndrs": [Ndr_Summary_Model.model_validate(ndr) for ndr in candidates],
                },
            )

        return self._run("escalations", call)


@lru_cache
def get_ndr_service() -> NdrService:
    return NdrService()
