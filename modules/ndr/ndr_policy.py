from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

from logger import logger

from data.ndr_policy import (
    reattempt_reason_codes,
    pickup_reschedule_reason_codes,
    max_authorized_attempt_count,
    recommended_action_hour_ist,
)
from database import time_now_ist
from utils.exception_handler import PolicyViolation, ValidationError


class NdrAction(str, Enum):
    RE_ATTEMPT = "RE-ATTEMPT"
    PICKUP_RESCHEDULE = "PICKUP_RESCHEDULE"
    RTO = "RTO"


# actions that ask the carrier to try the delivery again
REATTEMPT_CLASS_ACTIONS = frozenset({NdrAction.RE_ATTEMPT})

RTO_INSTRUCTION = "Maximum 3 attempts allowed. Please initiate RTO."


@dataclass(frozen=True)
class PolicyDecision:
    allowed: bool
    reason: Optional[str] = None

    def __bool__(self):
        return self.allowed


ALLOW = PolicyDecision(allowed=True)


def parse_action(action) -> NdrAction:
    if isinstance(action, NdrAction):
        return action
    try:
        return NdrAction(action)
    except ValueError:
        raise ValidationError(
            "Invalid NDR action '{}'. Must be one of: {}".format(
                action, ", ".join(a.value for a in NdrAction)
            )
        )


class ResolutionPolicy:
    """
    Decides whether a remediation action may be sent to the carrier for an
    NDR with the given reason code and attempt count.
    """

    def __init__(
        self,
        reattempt_codes: Optional[Iterable[str]] = None,
        reschedule_codes: Optional[Iterable[str]] = None,
        max_attempt_count: int = max_authorized_attempt_count,
    ):
        self.reattempt_codes = frozenset(
            reattempt_reason_codes if reattempt_codes is None else reattempt_codes
        )
        self.reschedule_codes = frozenset(
            pickup_reschedule_reason_codes
            if reschedule_codes is None
            else reschedule_codes
        )
        self.max_attempt_count = max_attempt_count

        overlap = self.reattempt_codes & self.reschedule_codes
        if overlap:
            raise ValueError(
                "Reason codes cannot allow both actions: {}".format(sorted(overlap))
            )

    def attempts_remaining(self, attempt_count: int) -> bool:
        return (attempt_count or 0) <= self.max_attempt_count

    def enforce_reattempt_allowed(self, attempt_count: int, waybill: str = None):
        """
        Guard for any path that schedules another delivery without a carrier
        action (customer responses, status overrides).
        """
        if not self.attempts_remaining(attempt_count):
            logger.warning(
                msg="Reattempt denied for {} (attempts={}): {}".format(
                    waybill, attempt_count, RTO_INSTRUCTION
                )
            )
            raise PolicyViolation(
                RTO_INSTRUCTION,
                data={"waybill": waybill, "attempt_count": attempt_count},
            )

    def authorize(self, action, reason_code: Optional[str], attempt_count: int) -> PolicyDecision:
        action = parse_action(action)

        if action == NdrAction.RTO:
            return ALLOW

        if not self.attempts_remaining(attempt_count):
            return PolicyDecision(allowed=False, reason=RTO_INSTRUCTION)

        if action == NdrAction.RE_ATTEMPT and reason_code not in self.reattempt_codes:
            return PolicyDecision(
                allowed=False,
                reason="Re-attempt not allowed for NSL code: {}. Allowed codes: {}".format(
                    reason_code, ", ".join(sorted(self.reattempt_codes))
                ),
            )

        if (
            action == NdrAction.PICKUP_RESCHEDULE
            and reason_code not in self.reschedule_codes
        ):
            return PolicyDecision(
                allowed=False,
                reason="Pickup reschedule not allowed for NSL code: {}. Allowed codes: {}".format(
                    reason_code, ", ".join(sorted(self.reschedule_codes))
                ),
            )

        return ALLOW

    def enforce(self, action, reason_code: Optional[str], attempt_count: int, waybill: str = None):
        decision = self.authorize(action, reason_code, attempt_count)
        if not decision.allowed:
            logger.warning(
                msg="NDR action {} denied for {} (reason_code={}, attempts={}): {}".format(
                    getattr(action, "value", action),
                    waybill,
                    reason_code,
                    attempt_count,
                    decision.reason,
                )
            )
            raise PolicyViolation(
                decision.reason,
                data={"waybill": waybill, "reason_code": reason_code, "attempt_count": attempt_count},
            )

        if time_now_ist().hour < recommended_action_hour_ist:
            logger.warning(
                msg="NDR action {} for {} applied before 9 PM IST, carrier recommends later".format(
                    getattr(action, "value", action), waybill
                )
            )
        return decision


default_policy = ResolutionPolicy()
