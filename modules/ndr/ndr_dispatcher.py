"""
Action Dispatcher

Sends remediation requests (re-attempt, pickup reschedule, RTO) to the
carrier and records their outcome on the NDR aggregate.

Single dispatch:
    validate -> load -> state pre-check -> policy -> carrier call -> write
Nothing is written unless the carrier accepted the request. The write re-runs
the state machine on fresh state; if a concurrent event moved the NDR in the
meantime the request is still recorded in the history but the state is left
alone.

Bulk dispatch runs every item independently in a bounded worker pool, or,
when NDR_BULK_USE_BATCH_API is set, policy-checks every item locally and sends
the eligible ones in one carrier batch call. Either way the result holds one
outcome per input, in input order.
"""

import os
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, asdict
from datetime import date
from typing import List, Optional

from sqlalchemy.orm import Session

from context_manager.context import context_user_data
from logger import logger

# models
from models import Ndr

from modules.ndr.ndr_policy import (
    NdrAction,
    REATTEMPT_CLASS_ACTIONS,
    ResolutionPolicy,
    default_policy,
    parse_action,
)
from modules.ndr.ndr_state_machine import (
    EventType,
    NdrEvent,
    parse_state,
    transition,
)
from modules.ndr.ndr_store import NdrStore, history_entry
from modules.ndr.ndr_workflow import next_attempt_date_for, set_status
from modules.ndr_history.ndr_history_service import (
    NdrHistoryService,
    PENDING_EXTERNAL_STATUS,
)
from shipping_partner.delhivery.delhivery import Delhivery, delhivery_client

from utils.exception_handler import (
    NdrError,
    NotFoundError,
    PolicyViolation,
    ValidationError,
)


NDR_BULK_MAX_WORKERS = int(os.environ.get("NDR_BULK_MAX_WORKERS", "5"))
NDR_BULK_TIMEOUT_SECONDS = float(os.environ.get("NDR_BULK_TIMEOUT_SECONDS", "120"))
NDR_BULK_USE_BATCH_API = os.environ.get("NDR_BULK_USE_BATCH_API", "false").lower() in (
    "1",
    "true",
    "yes",
)

# resolution_action recorded for each carrier action
RESOLUTION_FOR_ACTION = {
    NdrAction.RE_ATTEMPT: "reattempt",
    NdrAction.PICKUP_RESCHEDULE: "rto",
    NdrAction.RTO: "rto",
}


@dataclass
class DispatchResult:
    waybill: str
    action: str
    correlation_id: Optional[str]
    status: str
    next_attempt_date: Optional[date] = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class BulkItemOutcome:
    id: str
    success: bool
    correlation_id: Optional[str] = None
    message: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


def _event_for(action: NdrAction) -> NdrEvent:
    if action == NdrAction.RTO:
        return NdrEvent(type=EventType.RTO)
    return NdrEvent(type=EventType.ACTION)


class ActionDispatcher:
    def __init__(
        self,
        store: Optional[NdrStore] = None,
        carrier: Optional[Delhivery] = None,
        policy: Optional[ResolutionPolicy] = None,
        max_workers: int = NDR_BULK_MAX_WORKERS,
        bulk_timeout: float = NDR_BULK_TIMEOUT_SECONDS,
        use_batch_api: bool = NDR_BULK_USE_BATCH_API,
    ):
        self.store = store or NdrStore()
        self.carrier = carrier or delhivery_client
        self.policy = policy or default_policy
        self.max_workers = max(1, max_workers)
        self.bulk_timeout = bulk_timeout
        self.use_batch_api = use_batch_api

    # ============================================
    # PRE-CHECKS
    # ============================================

    def _authorize(self, ndr: Ndr, action: NdrAction):
        """Raise unless `action` is legal for the NDR as it is right now."""
        transition(parse_state(ndr.status), _event_for(action))
        self.policy.enforce(
            action, ndr.reason_code, ndr.attempt_count, waybill=ndr.waybill
        )

    # ============================================
    # WRITE AFTER CARRIER ACCEPTANCE
    # ============================================

    def _record(
        self,
        ndr: Ndr,
        action: NdrAction,
        correlation_id: Optional[str],
        reason: Optional[str],
        client_id: Optional[int],
    ) -> Ndr:
        def mutate(db: Session, fresh: Ndr):
            current = parse_state(fresh.status)
            try:
                new_state = transition(current, _event_for(action))
            except PolicyViolation as e:
                # carrier already accepted, keep the record without moving state
                logger.warning(
                    extra=context_user_data.get(),
                    msg="NDR {} changed to {} during {}: {}".format(
                        fresh.waybill, current.value, action.value, e.message
                    ),
                )
                new_state = current
            else:
                if new_state != current:
                    set_status(fresh, new_state, rto_reason=reason)
                fresh.resolution_action = RESOLUTION_FOR_ACTION[action]
                fresh.resolution_notes = reason or fresh.resolution_notes
                if action in REATTEMPT_CLASS_ACTIONS:
                    fresh.next_attempt_date = next_attempt_date_for(
                        fresh.attempt_count
                    )

            fresh.action_history.append(
                history_entry(
                    kind="rto" if action == NdrAction.RTO else "action",
                    action=action.value,
                    from_status=current.value,
                    to_status=new_state.value,
                    remarks=reason,
                    external_correlation_id=correlation_id,
                    external_status=PENDING_EXTERNAL_STATUS if correlation_id else None,
                )
            )

        return self.store.update(ndr.uuid, mutate, client_id)

    # ============================================
    # SINGLE DISPATCH
    # ============================================

    def _call_carrier(self, ndr: Ndr, action: NdrAction, reason: Optional[str]) -> Optional[str]:
        if action == NdrAction.RTO:
            self.carrier.initiate_rto(
                ndr.waybill, reason or "Multiple delivery attempts failed"
            )
            return None
        response = self.carrier.take_ndr_action(ndr.waybill, action.value, reason)
        return response["request_id"]

    def dispatch(
        self,
        identifier,
        action,
        reason: Optional[str] = None,
        client_id: Optional[int] = None,
    ) -> DispatchResult:
        action = parse_action(action)
        ndr = self.store.get(identifier, client_id)

        self._authorize(ndr, action)

        logger.info(
            extra=context_user_data.get(),
            msg="Dispatching {} for {} (reason_code={}, attempts={})".format(
                action.value, ndr.waybill, ndr.reason_code, ndr.attempt_count
            ),
        )

        # ExternalServiceError propagates with the aggregate untouched
        correlation_id = self._call_carrier(ndr, action, reason)

        ndr = self._record(ndr, action, correlation_id, reason, client_id)

        return DispatchResult(
            waybill=ndr.waybill,
            action=action.value,
            correlation_id=correlation_id,
            status=ndr.status,
            next_attempt_date=ndr.next_attempt_date,
        )

    def initiate_rto(self, identifier, reason: str, client_id: Optional[int] = None) -> DispatchResult:
        if not reason or not reason.strip():
            raise ValidationError("An RTO reason is required")
        return self.dispatch(identifier, NdrAction.RTO, reason, client_id)

    # ============================================
    # BULK DISPATCH
    # ============================================

    def _dispatch_item(self, identifier, action: NdrAction, reason, client_id) -> BulkItemOutcome:
        try:
            result = self.dispatch(identifier, action, reason, client_id)
            return BulkItemOutcome(
                id=str(identifier),
                success=True,
                correlation_id=result.correlation_id,
                message="{} initiated successfully".format(action.value),
            )
        except NdrError as e:
            return BulkItemOutcome(id=str(identifier), success=False, message=e.message)
        except Exception as e:
            logger.error(
                extra=context_user_data.get(),
                msg="Unexpected error dispatching {} for {}: {}".format(
                    action.value, identifier, e
                ),
            )
            return BulkItemOutcome(
                id=str(identifier), success=False, message="Internal error: {}".format(e)
            )

    def dispatch_bulk(
        self,
        identifiers: List[str],
        action,
        reason: Optional[str] = None,
        client_id: Optional[int] = None,
    ) -> List[BulkItemOutcome]:
        action = parse_action(action)
        if not identifiers:
            raise ValidationError("At least one waybill is required")

        if self.use_batch_api and action != NdrAction.RTO:
            outcomes = self._dispatch_batch(identifiers, action, reason, client_id)
        else:
            outcomes = self._dispatch_pool(identifiers, action, reason, client_id)

        failed = sum(1 for outcome in outcomes if not outcome.success)
        logger.info(
            extra=context_user_data.get(),
            msg="Bulk {} finished: {} items, {} failed".format(
                action.value, len(outcomes), failed
            ),
        )
        return outcomes

    def _dispatch_pool(self, identifiers, action, reason, client_id) -> List[BulkItemOutcome]:
        user_data = context_user_data.get()

        def run(identifier):
            # context vars do not cross into pool threads on their own
            context_user_data.set(user_data)
            return self._dispatch_item(identifier, action, reason, client_id)

        executor = ThreadPoolExecutor(max_workers=self.max_workers)
        try:
            futures = [executor.submit(run, identifier) for identifier in identifiers]
            wait(futures, timeout=self.bulk_timeout)

            outcomes = []
            for identifier, future in zip(identifiers, futures):
                if future.done():
                    outcomes.append(future.result())
                else:
                    future.cancel()
                    outcomes.append(
                        BulkItemOutcome(
                            id=str(identifier),
                            success=False,
                            message="Outcome unknown after {}s, will be reconciled".format(
                                self.bulk_timeout
                            ),
                        )
                    )
            return outcomes
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

    def _dispatch_batch(self, identifiers, action, reason, client_id) -> List[BulkItemOutcome]:
        outcomes: List[Optional[BulkItemOutcome]] = [None] * len(identifiers)
        eligible = []

        for index, identifier in enumerate(identifiers):
            try:
                ndr = self.store.get(identifier, client_id)
                self._authorize(ndr, action)
                eligible.append((index, ndr))
            except NdrError as e:
                outcomes[index] = BulkItemOutcome(
                    id=str(identifier), success=False, message=e.message
                )

        if eligible:
            try:
                response = self.carrier.bulk_ndr_action(
                    [ndr.waybill for _, ndr in eligible], action.value
                )
            except NdrError as e:
                for index, _ in eligible:
                    outcomes[index] = BulkItemOutcome(
                        id=str(identifiers[index]), success=False, message=e.message
                    )
                return outcomes

            correlation_id = response["request_id"]
            for index, ndr in eligible:
                try:
                    self._record(ndr, action, correlation_id, reason, client_id)
                    outcomes[index] = BulkItemOutcome(
                        id=str(identifiers[index]),
                        success=True,
                        correlation_id=correlation_id,
                        message="{} initiated successfully".format(action.value),
                    )
                except NdrError as e:
                    outcomes[index] = BulkItemOutcome(
                        id=str(identifiers[index]),
                        success=False,
                        correlation_id=correlation_id,
                        message=e.message,
                    )

        return outcomes

    # ============================================
    # RECONCILIATION
    # ============================================

    def reconcile(
        self,
        correlation_id: str,
        external_status: str,
        waybills: Optional[List[str]] = None,
        client_id: Optional[int] = None,
    ) -> int:
        return NdrHistoryService.reconcile(
            correlation_id,
            external_status,
            waybills,
            session_factory=self.store.session_factory,
            client_id=client_id,
        )

    def poll_status(self, correlation_id: str, client_id: Optional[int] = None) -> dict:
        """
        Ask the carrier for the outcome of one request and reconcile it. With
        a client_id, only requests touching that client's NDRs are visible.
        """
        if not correlation_id or not correlation_id.strip():
            raise ValidationError("correlation_id is required")

        if client_id is not None and not NdrHistoryService.belongs_to_client(
            correlation_id, client_id, session_factory=self.store.session_factory
        ):
            raise NotFoundError(
                "Carrier request not found", data={"correlation_id": correlation_id}
            )

        carrier_status = self.carrier.get_ndr_status(correlation_id)
        external_status = carrier_status.get("status") or PENDING_EXTERNAL_STATUS
        waybills = carrier_status.get("waybills") or []

        updated = self.reconcile(correlation_id, external_status, waybills, client_id)
        return {
            "correlation_id": correlation_id,
            "status": external_status,
            "waybills": waybills,
            "updated_entries": updated,
        }
