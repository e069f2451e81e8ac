"""
Aggregate-level NDR operations that do not involve the carrier: webhook
ingestion, failed attempt reports, status overrides, customer responses,
communications, notes and reopening.

Each operation validates its input, then hands the store a mutation that runs
the state machine and appends exactly one history entry. Errors are raised as
NdrError subclasses; the service layer turns them into responses.
"""

from datetime import timedelta
from typing import Optional, Tuple

from sqlalchemy.orm import Session

from context_manager.context import context_user_data
from database import time_now
from logger import logger

# models
from models import Ndr, Shipment

from modules.ndr.ndr_schema import (
    Ndr_attempt_create,
    Ndr_communication_create,
    Ndr_customer_response_update,
    Ndr_note_create,
    Ndr_reopen_request,
    Ndr_status_update,
    Ndr_webhook_event,
)
from modules.ndr.ndr_state_machine import (
    EventType,
    NdrEvent,
    NdrState,
    INITIAL_STATE,
    RTO_STATES,
    TERMINAL_STATES,
    is_terminal,
    parse_state,
    transition,
)
from modules.ndr.ndr_policy import ResolutionPolicy, default_policy
from modules.ndr.ndr_store import NdrStore, has_event, history_entry
from modules.ndr.status_normalizer import (
    CanonicalStatus,
    StatusNormalizer,
    default_normalizer,
)
from data.ndr_policy import max_authorized_attempt_count

from utils.exception_handler import NotFoundError, ValidationError


def next_attempt_date_for(attempt_count: int):
    """Tomorrow while another attempt can still be authorized, else None."""
    if attempt_count > max_authorized_attempt_count:
        return None
    return time_now().date() + timedelta(days=1)


def set_status(ndr: Ndr, new_state: NdrState, rto_reason: Optional[str] = None):
    ndr.status = new_state.value
    now = time_now()

    if new_state in TERMINAL_STATES:
        ndr.resolution_date = now

    if new_state in RTO_STATES:
        rto_info = dict(ndr.rto_info or {})
        rto_info.setdefault("rto_initiated_date", now.isoformat())
        if rto_reason:
            rto_info["rto_reason"] = rto_reason
        rto_info["rto_status"] = {
            NdrState.RTO_INITIATED: "initiated",
            NdrState.RTO_IN_TRANSIT: "in_transit",
            NdrState.RTO_DELIVERED: "delivered",
        }[new_state]
        if new_state == NdrState.RTO_DELIVERED:
            rto_info["rto_delivered_date"] = now.isoformat()
        ndr.rto_info = rto_info
        ndr.resolution_action = "rto"


class NdrWorkflow:
    def __init__(
        self,
        store: Optional[NdrStore] = None,
        normalizer: Optional[StatusNormalizer] = None,
        policy: Optional[ResolutionPolicy] = None,
    ):
        self.store = store or NdrStore()
        self.normalizer = normalizer or default_normalizer
        self.policy = policy or default_policy

    def _guard_reattempt(self, ndr: Ndr, current: NdrState, new_state: NdrState):
        # scheduling another delivery on an exhausted NDR leaves only RTO
        if new_state == NdrState.REATTEMPT_SCHEDULED and current != new_state:
            self.policy.enforce_reattempt_allowed(ndr.attempt_count, waybill=ndr.waybill)

    # ============================================
    # FAILED ATTEMPTS
    # ============================================

    def _apply_failed_attempt(
        self,
        ndr: Ndr,
        kind: str,
        action: str,
        event_key: str,
        reason_code: Optional[str] = None,
        reason_description: Optional[str] = None,
        remarks: Optional[str] = None,
    ) -> bool:
        if has_event(ndr, event_key):
            return False

        current = parse_state(ndr.status)

        # finished or returning parcels only get the scan on record
        if current in TERMINAL_STATES or current in RTO_STATES:
            ndr.action_history.append(
                history_entry(
                    kind=kind,
                    action=action,
                    from_status=current.value,
                    to_status=current.value,
                    remarks=remarks,
                    event_key=event_key,
                )
            )
            return True

        new_state = transition(current, NdrEvent(type=EventType.FAILED_ATTEMPT))

        ndr.attempt_count = (ndr.attempt_count or 0) + 1
        ndr.last_attempt_date = time_now()
        ndr.next_attempt_date = next_attempt_date_for(ndr.attempt_count)
        ndr.resolution_action = None
        if reason_code:
            ndr.reason_code = reason_code
        if reason_description:
            ndr.reason_description = reason_description
        ndr.status = new_state.value

        ndr.action_history.append(
            history_entry(
                kind=kind,
                action=action,
                from_status=current.value,
                to_status=new_state.value,
                remarks=remarks or "Attempt {}".format(ndr.attempt_count),
                event_key=event_key,
            )
        )
        return True

    def _open_or_add_attempt(
        self,
        waybill: str,
        client_id: int,
        order_reference: Optional[str],
        kind: str,
        action: str,
        event_key: str,
        reason_code: Optional[str],
        reason_description: Optional[str],
        remarks: Optional[str] = None,
    ) -> Tuple[Ndr, bool]:
        def build() -> Ndr:
            now = time_now()
            ndr = Ndr(
                client_id=client_id,
                waybill=waybill,
                order_reference=order_reference,
                reason_code=reason_code,
                reason_description=reason_description,
                status=INITIAL_STATE.value,
                attempt_count=1,
                next_attempt_date=next_attempt_date_for(1),
                ndr_date=now,
                last_attempt_date=now,
                reopened_count=0,
            )
            ndr.action_history.append(
                history_entry(
                    kind=kind,
                    action=action,
                    to_status=INITIAL_STATE.value,
                    remarks=remarks or "Attempt 1",
                    event_key=event_key,
                    timestamp=now,
                )
            )
            return ndr

        def mutate(db: Session, ndr: Ndr) -> bool:
            return self._apply_failed_attempt(
                ndr,
                kind=kind,
                action=action,
                event_key=event_key,
                reason_code=reason_code,
                reason_description=reason_description,
                remarks=remarks,
            )

        return self.store.create_or_update(waybill, build, mutate)

    def record_attempt(self, payload: Ndr_attempt_create, client_id: int) -> Tuple[Ndr, bool]:
        existing = self.store.find(payload.waybill)
        if existing is not None and existing.client_id != client_id:
            raise NotFoundError("NDR not found", data={"identifier": payload.waybill})

        attempted_at = payload.attempt_date or time_now()
        event_key = "attempt|{}|{}".format(payload.waybill, attempted_at.isoformat())

        ndr, created = self._open_or_add_attempt(
            waybill=payload.waybill,
            client_id=client_id,
            order_reference=payload.order_reference,
            kind="attempt",
            action="delivery_attempt_failed",
            event_key=event_key,
            reason_code=payload.reason_code,
            reason_description=payload.reason_description,
            remarks=payload.remarks,
        )
        self._flag_shipment(payload.waybill, is_ndr=True)

        logger.info(
            extra=context_user_data.get(),
            msg="Failed attempt recorded for {} (attempts={}, created={})".format(
                ndr.waybill, ndr.attempt_count, created
            ),
        )
        return ndr, created

    # ============================================
    # WEBHOOK INGESTION
    # ============================================

    def _update_shipment_pointer(self, event: Ndr_webhook_event, canonical: CanonicalStatus) -> Shipment:
        with self.store.session() as db:
            shipment = (
                db.query(Shipment)
                .filter(Shipment.waybill == event.waybill, Shipment.is_deleted.is_(False))
                .first()
            )
            if shipment is None:
                raise NotFoundError(
                    "Unknown waybill", data={"waybill": event.waybill}
                )

            shipment.current_status = canonical.value
            shipment.courier_status = event.status
            if event.expected_delivery is not None:
                shipment.expected_delivery_date = event.expected_delivery
            db.commit()
            return shipment

    def _flag_shipment(self, waybill: str, is_ndr: bool):
        with self.store.session() as db:
            shipment = db.query(Shipment).filter(Shipment.waybill == waybill).first()
            if shipment is not None and shipment.is_ndr != is_ndr:
                shipment.is_ndr = is_ndr
                db.commit()

    def ingest_webhook(self, event: Ndr_webhook_event) -> Tuple[Optional[Ndr], bool]:
        """
        Apply one carrier status event. Returns (ndr, created); ndr is None
        when the waybill has no NDR and the event does not open one.
        """
        canonical = self.normalizer.normalize(event.status)
        shipment = self._update_shipment_pointer(event, canonical)
        event_key = event.event_key
        description = (
            event.scans[-1].instructions if event.scans and event.scans[-1].instructions
            else event.status
        )

        logger.info(
            extra=context_user_data.get(),
            msg="Webhook for {}: '{}' -> {}".format(
                event.waybill, event.status, canonical.value
            ),
        )

        if self.normalizer.is_ndr_trigger(event.status):
            ndr, created = self._open_or_add_attempt(
                waybill=event.waybill,
                client_id=shipment.client_id,
                order_reference=shipment.order_reference,
                kind="webhook",
                action=event.status,
                event_key=event_key,
                reason_code=event.nsl_code,
                reason_description=description,
                remarks=description,
            )
            self._flag_shipment(event.waybill, is_ndr=not is_terminal(ndr.status))
            return ndr, created

        if self.store.find(event.waybill) is None:
            self._flag_shipment(event.waybill, is_ndr=False)
            return None, False

        ndr_event = NdrEvent(
            type=EventType.WEBHOOK,
            canonical_status=canonical,
            rto_delivered=self.normalizer.is_rto_delivered(event.status),
        )

        def mutate(db: Session, ndr: Ndr) -> bool:
            if has_event(ndr, event_key):
                return False

            current = parse_state(ndr.status)
            new_state = transition(current, ndr_event)
            if new_state != current:
                set_status(ndr, new_state)

            ndr.action_history.append(
                history_entry(
                    kind="webhook",
                    action=event.status,
                    from_status=current.value,
                    to_status=new_state.value,
                    remarks=description,
                    event_key=event_key,
                )
            )
            return True

        ndr = self.store.update(event.waybill, mutate)
        # the shipment stays flagged while its NDR is open
        self._flag_shipment(event.waybill, is_ndr=not is_terminal(ndr.status))
        return ndr, False

    # ============================================
    # CALLER OPERATIONS
    # ============================================

    def update_status(self, identifier, payload: Ndr_status_update, client_id: int) -> Ndr:
        target = parse_state(payload.status)

        def mutate(db: Session, ndr: Ndr):
            current = parse_state(ndr.status)
            new_state = transition(
                current, NdrEvent(type=EventType.STATUS_OVERRIDE, target=target)
            )
            self._guard_reattempt(ndr, current, new_state)
            if new_state != current:
                set_status(ndr, new_state)
            if payload.resolution_action is not None:
                ndr.resolution_action = payload.resolution_action.value
            if payload.notes:
                ndr.resolution_notes = payload.notes

            ndr.action_history.append(
                history_entry(
                    kind="status",
                    action="status_update",
                    from_status=current.value,
                    to_status=new_state.value,
                    remarks=payload.notes,
                )
            )

        return self.store.update(identifier, mutate, client_id)

    def record_communication(self, identifier, payload: Ndr_communication_create, client_id: int) -> Ndr:
        remarks = " - ".join(
            part
            for part in (payload.status, payload.content, payload.agent_name)
            if part
        )

        def mutate(db: Session, ndr: Ndr):
            current = parse_state(ndr.status)
            new_state = transition(current, NdrEvent(type=EventType.COMMUNICATION))
            ndr.status = new_state.value
            contacted_at = time_now()
            if ndr.first_contact_date is None:
                ndr.first_contact_date = contacted_at
            ndr.last_contact_date = contacted_at
            ndr.action_history.append(
                history_entry(
                    kind="communication",
                    action=payload.channel.value,
                    from_status=current.value,
                    to_status=new_state.value,
                    remarks=remarks or None,
                )
            )

        return self.store.update(identifier, mutate, client_id)

    def update_customer_response(
        self, identifier, payload: Ndr_customer_response_update, client_id: int
    ) -> Ndr:
        def mutate(db: Session, ndr: Ndr):
            current = parse_state(ndr.status)
            new_state = transition(
                current,
                NdrEvent(
                    type=EventType.CUSTOMER_RESPONSE,
                    preference=payload.preference.value,
                ),
            )
            self._guard_reattempt(ndr, current, new_state)

            ndr.customer_response = {
                "received_at": time_now().isoformat(),
                "channel": payload.channel.value,
                "preference": payload.preference.value,
                "updated_address": payload.updated_address,
                "updated_phone": payload.updated_phone,
                "preferred_delivery_date": (
                    payload.preferred_delivery_date.isoformat()
                    if payload.preferred_delivery_date
                    else None
                ),
                "notes": payload.notes,
            }
            if payload.preferred_delivery_date:
                ndr.next_attempt_date = payload.preferred_delivery_date

            if new_state != current:
                set_status(
                    ndr,
                    new_state,
                    rto_reason="Customer cancelled order"
                    if new_state == NdrState.RTO_INITIATED
                    else None,
                )

            ndr.action_history.append(
                history_entry(
                    kind="customer_response",
                    action=payload.preference.value,
                    from_status=current.value,
                    to_status=new_state.value,
                    remarks=payload.notes,
                )
            )

        return self.store.update(identifier, mutate, client_id)

    def reopen(self, identifier, payload: Ndr_reopen_request, client_id: int) -> Ndr:
        if not payload.reason:
            raise ValidationError("A reason is required to reopen an NDR")

        def mutate(db: Session, ndr: Ndr):
            current = parse_state(ndr.status)
            new_state = transition(
                current, NdrEvent(type=EventType.REOPEN, reason=payload.reason)
            )
            ndr.status = new_state.value
            ndr.reopened_count = (ndr.reopened_count or 0) + 1
            ndr.resolution_date = None
            ndr.action_history.append(
                history_entry(
                    kind="system",
                    action="reopen",
                    from_status=current.value,
                    to_status=new_state.value,
                    remarks=payload.reason,
                )
            )

        ndr = self.store.update(identifier, mutate, client_id)
        self._flag_shipment(ndr.waybill, is_ndr=True)
        logger.info(
            extra=context_user_data.get(),
            msg="NDR {} reopened ({} times): {}".format(
                ndr.waybill, ndr.reopened_count, payload.reason
            ),
        )
        return ndr

    def add_note(self, identifier, payload: Ndr_note_create, client_id: int) -> Ndr:
        def mutate(db: Session, ndr: Ndr):
            ndr.action_history.append(
                history_entry(
                    kind="note",
                    action="note",
                    from_status=ndr.status,
                    to_status=ndr.status,
                    remarks=payload.note,
                )
            )

        return self.store.update(identifier, mutate, client_id)
