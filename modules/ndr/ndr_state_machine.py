"""
NDR workflow state machine.

The transition function is pure: it takes the current state and an event and
returns the next state, or raises PolicyViolation when the event is not
allowed from that state. Persisting the new state together with its history
entry is the store's job.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from modules.ndr.status_normalizer import CanonicalStatus
from utils.exception_handler import PolicyViolation, ValidationError


class NdrState(str, Enum):
    NEW_NDR = "new_ndr"
    CUSTOMER_CONTACTED = "customer_contacted"
    REATTEMPT_SCHEDULED = "reattempt_scheduled"
    CUSTOMER_RESPONSE_PENDING = "customer_response_pending"
    ADDRESS_UPDATED = "address_updated"
    PAYMENT_UPDATED = "payment_updated"
    CUSTOMER_PICKUP = "customer_pickup"
    DELIVERED = "delivered"
    RTO_INITIATED = "rto_initiated"
    RTO_IN_TRANSIT = "rto_in_transit"
    RTO_DELIVERED = "rto_delivered"
    CLOSED = "closed"


INITIAL_STATE = NdrState.NEW_NDR

TERMINAL_STATES = frozenset(
    {NdrState.DELIVERED, NdrState.RTO_DELIVERED, NdrState.CLOSED}
)

RTO_STATES = frozenset(
    {NdrState.RTO_INITIATED, NdrState.RTO_IN_TRANSIT, NdrState.RTO_DELIVERED}
)

# states where a resolution has been decided, the only ones that may close
CLOSEABLE_STATES = frozenset(
    {
        NdrState.REATTEMPT_SCHEDULED,
        NdrState.ADDRESS_UPDATED,
        NdrState.PAYMENT_UPDATED,
        NdrState.CUSTOMER_PICKUP,
        NdrState.DELIVERED,
        NdrState.RTO_DELIVERED,
    }
)

_OPEN_TARGETS = frozenset(
    {
        NdrState.CUSTOMER_CONTACTED,
        NdrState.REATTEMPT_SCHEDULED,
        NdrState.CUSTOMER_RESPONSE_PENDING,
        NdrState.ADDRESS_UPDATED,
        NdrState.PAYMENT_UPDATED,
        NdrState.CUSTOMER_PICKUP,
        NdrState.RTO_INITIATED,
        NdrState.DELIVERED,
    }
)

# explicit moves allowed through status overrides, actions and responses
ALLOWED_TRANSITIONS = {
    NdrState.NEW_NDR: _OPEN_TARGETS,
    NdrState.CUSTOMER_CONTACTED: _OPEN_TARGETS - {NdrState.CUSTOMER_CONTACTED},
    NdrState.CUSTOMER_RESPONSE_PENDING: _OPEN_TARGETS
    - {NdrState.CUSTOMER_RESPONSE_PENDING},
    NdrState.REATTEMPT_SCHEDULED: frozenset(
        {
            NdrState.CUSTOMER_CONTACTED,
            NdrState.CUSTOMER_RESPONSE_PENDING,
            NdrState.ADDRESS_UPDATED,
            NdrState.PAYMENT_UPDATED,
            NdrState.CUSTOMER_PICKUP,
            NdrState.DELIVERED,
            NdrState.RTO_INITIATED,
            NdrState.CLOSED,
        }
    ),
    NdrState.ADDRESS_UPDATED: frozenset(
        {
            NdrState.REATTEMPT_SCHEDULED,
            NdrState.CUSTOMER_CONTACTED,
            NdrState.DELIVERED,
            NdrState.RTO_INITIATED,
            NdrState.CLOSED,
        }
    ),
    NdrState.PAYMENT_UPDATED: frozenset(
        {
            NdrState.REATTEMPT_SCHEDULED,
            NdrState.CUSTOMER_CONTACTED,
            NdrState.DELIVERED,
            NdrState.RTO_INITIATED,
            NdrState.CLOSED,
        }
    ),
    NdrState.CUSTOMER_PICKUP: frozenset(
        {NdrState.DELIVERED, NdrState.RTO_INITIATED, NdrState.CLOSED}
    ),
    NdrState.RTO_INITIATED: frozenset(
        {NdrState.RTO_IN_TRANSIT, NdrState.RTO_DELIVERED}
    ),
    NdrState.RTO_IN_TRANSIT: frozenset({NdrState.RTO_DELIVERED}),
    NdrState.DELIVERED: frozenset({NdrState.CLOSED}),
    NdrState.RTO_DELIVERED: frozenset({NdrState.CLOSED}),
    NdrState.CLOSED: frozenset(),
}

CUSTOMER_PREFERENCE_TARGETS = {
    "reattempt": NdrState.REATTEMPT_SCHEDULED,
    "reschedule": NdrState.REATTEMPT_SCHEDULED,
    "change_address": NdrState.ADDRESS_UPDATED,
    "customer_pickup": NdrState.CUSTOMER_PICKUP,
    "cancel_order": NdrState.RTO_INITIATED,
}

# state a reopened NDR lands in
REOPEN_STATE = NdrState.CUSTOMER_RESPONSE_PENDING


class EventType(str, Enum):
    WEBHOOK = "webhook"
    FAILED_ATTEMPT = "attempt"
    CUSTOMER_RESPONSE = "customer_response"
    ACTION = "action"
    RTO = "rto"
    STATUS_OVERRIDE = "status"
    COMMUNICATION = "communication"
    REOPEN = "reopen"


@dataclass(frozen=True)
class NdrEvent:
    type: EventType
    canonical_status: Optional[CanonicalStatus] = None
    rto_delivered: bool = False
    target: Optional[NdrState] = None
    preference: Optional[str] = None
    reason: Optional[str] = None
    extra: dict = field(default_factory=dict)


def parse_state(value) -> NdrState:
    if isinstance(value, NdrState):
        return value
    try:
        return NdrState(value)
    except ValueError:
        raise ValidationError("Unknown NDR status '{}'".format(value))


def is_terminal(state) -> bool:
    return parse_state(state) in TERMINAL_STATES


def _require_legal(current: NdrState, target: NdrState) -> NdrState:
    if target == NdrState.CLOSED and current not in CLOSEABLE_STATES:
        raise PolicyViolation(
            "NDR cannot be closed from '{}'. Resolve it first.".format(current.value),
            data={"current_status": current.value, "requested_status": target.value},
        )

    if current == target and current not in TERMINAL_STATES:
        return current

    if target not in ALLOWED_TRANSITIONS[current]:
        if current in TERMINAL_STATES:
            message = "Cannot update NDR in final state: {}".format(current.value)
        else:
            message = "Invalid status transition from {} to {}".format(
                current.value, target.value
            )
        raise PolicyViolation(
            message,
            data={"current_status": current.value, "requested_status": target.value},
        )
    return target


def _webhook_transition(current: NdrState, event: NdrEvent) -> NdrState:
    # carrier scans never reopen a finished NDR, they are only recorded
    if current in TERMINAL_STATES:
        return current

    status = event.canonical_status

    if status == CanonicalStatus.DELIVERED:
        return NdrState.DELIVERED

    if status == CanonicalStatus.RTO:
        if event.rto_delivered:
            return NdrState.RTO_DELIVERED
        if current == NdrState.RTO_INITIATED:
            return NdrState.RTO_IN_TRANSIT
        if current == NdrState.RTO_IN_TRANSIT:
            return current
        return NdrState.RTO_INITIATED

    if status == CanonicalStatus.NDR:
        return _failed_attempt_transition(current)

    return current


def _failed_attempt_transition(current: NdrState) -> NdrState:
    if current in TERMINAL_STATES or current in RTO_STATES:
        return current
    if current == NdrState.NEW_NDR:
        return current
    return NdrState.CUSTOMER_RESPONSE_PENDING


def transition(current_state, event: NdrEvent) -> NdrState:
    """Return the state `event` moves an NDR in `current_state` to."""
    current = parse_state(current_state)

    if event.type == EventType.WEBHOOK:
        return _webhook_transition(current, event)

    if event.type == EventType.FAILED_ATTEMPT:
        return _failed_attempt_transition(current)

    if event.type == EventType.REOPEN:
        if not event.reason or not event.reason.strip():
            raise ValidationError("A reason is required to reopen an NDR")
        if current not in TERMINAL_STATES:
            raise PolicyViolation(
                "Only closed, delivered or RTO delivered NDRs can be reopened (current: {})".format(
                    current.value
                )
            )
        return REOPEN_STATE

    if event.type == EventType.CUSTOMER_RESPONSE:
        target = CUSTOMER_PREFERENCE_TARGETS.get(event.preference)
        if target is None:
            raise ValidationError(
                "Unknown customer preference '{}'".format(event.preference)
            )
        return _require_legal(current, target)

    if event.type == EventType.ACTION:
        return _require_legal(current, NdrState.REATTEMPT_SCHEDULED)

    if event.type == EventType.RTO:
        if current in RTO_STATES:
            raise PolicyViolation(
                "RTO already initiated for this NDR (current: {})".format(current.value),
                data={"current_status": current.value},
            )
        return _require_legal(current, NdrState.RTO_INITIATED)

    if event.type == EventType.COMMUNICATION:
        if current in TERMINAL_STATES:
            raise PolicyViolation(
                "Cannot record communication on NDR in final state: {}".format(
                    current.value
                )
            )
        if current == NdrState.NEW_NDR:
            return NdrState.CUSTOMER_CONTACTED
        return current

    if event.type == EventType.STATUS_OVERRIDE:
        if event.target is None:
            raise ValidationError("A target status is required")
        return _require_legal(current, parse_state(event.target))

    raise ValidationError("Unsupported NDR event '{}'".format(event.type))
