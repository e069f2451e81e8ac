from celery_app import celery_app

from logger import logger

from modules.ndr_history.ndr_history_service import NdrHistoryService
from modules.ndr.ndr_service import get_ndr_service

from utils.exception_handler import ExternalServiceError, NdrError


@celery_app.task(
    bind=True,
    name="modules.ndr.ndr_tasks.poll_ndr_action_status",
    autoretry_for=(ExternalServiceError,),
    retry_backoff=True,
    max_retries=3,
)
def poll_ndr_action_status(self, correlation_id: str) -> dict:
    """Fetch one carrier request's status and write it onto its history entries."""
    dispatcher = get_ndr_service().dispatcher
    return dispatcher.poll_status(correlation_id)


@celery_app.task(name="modules.ndr.ndr_tasks.poll_pending_ndr_actions")
def poll_pending_ndr_actions(limit: int = 100) -> dict:
    dispatcher = get_ndr_service().dispatcher
    correlation_ids = NdrHistoryService.pending_correlation_ids(
        session_factory=dispatcher.store.session_factory, limit=limit
    )

    polled, failed = 0, 0
    for correlation_id in correlation_ids:
        try:
            dispatcher.poll_status(correlation_id)
            polled += 1
        except NdrError as e:
            failed += 1
            logger.warning(
                msg="Polling NDR request {} failed: {}".format(correlation_id, e.message)
            )

    logger.info(
        msg="Polled {} pending NDR requests ({} failed)".format(polled, failed)
    )
    return {"polled": polled, "failed": failed}
