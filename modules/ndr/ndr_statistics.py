from datetime import datetime, time, timedelta
from typing import List, Optional

from sqlalchemy import func

from context_manager.context import context_user_data
from database import time_now, UTC
from logger import logger

# models
from models import Ndr
from models.ndr import days_since

from modules.ndr.ndr_state_machine import NdrState, RTO_STATES, TERMINAL_STATES
from modules.ndr.ndr_store import NdrStore

from utils.exception_handler import ValidationError


TERMINAL_STATUS_VALUES = [state.value for state in TERMINAL_STATES]

# states where the carrier already has an instruction for the shipment
ACTION_TAKEN_STATUS_VALUES = [
    NdrState.REATTEMPT_SCHEDULED.value,
    NdrState.ADDRESS_UPDATED.value,
    NdrState.PAYMENT_UPDATED.value,
    NdrState.CUSTOMER_PICKUP.value,
]

ACTION_REQUIRED_STATUS_VALUES = [
    NdrState.NEW_NDR.value,
    NdrState.CUSTOMER_CONTACTED.value,
    NdrState.CUSTOMER_RESPONSE_PENDING.value,
]


class NdrStatistics:
    """
    Read-side aggregation over persisted NDRs. Every call queries current
    state; nothing is cached between calls.
    """

    def __init__(self, store: Optional[NdrStore] = None):
        self.store = store or NdrStore()

    def overview(self, period_days: int = 30, client_id: Optional[int] = None) -> dict:
        if period_days is None or period_days < 1:
            raise ValidationError("period must be a positive number of days")

        now = time_now()
        start_date = UTC.localize(
            datetime.combine((now - timedelta(days=period_days)).date(), time.min)
        )

        with self.store.session() as db:
            base = NdrStore._scoped(db, client_id).filter(
                Ndr.last_attempt_date >= start_date
            )

            total = base.count()

            status_rows = (
                base.with_entities(Ndr.status, func.count(Ndr.id))
                .group_by(Ndr.status)
                .all()
            )
            reason_rows = (
                base.with_entities(
                    Ndr.reason_code,
                    func.count(Ndr.id),
                    func.avg(Ndr.attempt_count),
                )
                .group_by(Ndr.reason_code)
                .order_by(func.count(Ndr.id).desc())
                .all()
            )
            ndr_dates = [row[0] for row in base.with_entities(Ndr.ndr_date).all()]

        days = [days_since(ndr_date, now) for ndr_date in ndr_dates]

        return {
            "period_days": period_days,
            "total": total,
            "status_breakdown": {status: count for status, count in status_rows},
            "reason_breakdown": {
                (reason_code or "unknown"): {
                    "count": count,
                    "avg_attempts": round(float(avg_attempts or 0), 2),
                }
                for reason_code, count, avg_attempts in reason_rows
            },
            "avg_days_in_ndr": round(sum(days) / len(days), 2) if days else 0,
        }

    def escalation_candidates(
        self, threshold_days: int = 7, client_id: Optional[int] = None
    ) -> List[Ndr]:
        """Open NDRs at least `threshold_days` old, oldest first."""
        if threshold_days is None or threshold_days < 0:
            raise ValidationError("threshold_days must be zero or more")

        now = time_now()
        cutoff = now - timedelta(days=threshold_days)

        with self.store.session() as db:
            candidates = (
                NdrStore._scoped(db, client_id)
                .filter(
                    Ndr.status.notin_(TERMINAL_STATUS_VALUES),
                    Ndr.ndr_date <= cutoff,
                )
                .order_by(Ndr.ndr_date.asc(), Ndr.id.asc())
                .all()
            )

        # the date filter is coarse on backends that drop offsets
        candidates = [
            ndr for ndr in candidates if ndr.days_in_ndr(now) >= threshold_days
        ]

        logger.info(
            extra=context_user_data.get(),
            msg="Found {} escalation candidates at {} days".format(
                len(candidates), threshold_days
            ),
        )
        return candidates

    def counts(self, client_id: Optional[int] = None) -> dict:
        with self.store.session() as db:
            rows = (
                NdrStore._scoped(db, client_id)
                .with_entities(Ndr.status, func.count(Ndr.id))
                .group_by(Ndr.status)
                .all()
            )

        by_status = {status: count for status, count in rows}

        counts = {
            "action_required": sum(
                by_status.get(status, 0) for status in ACTION_REQUIRED_STATUS_VALUES
            ),
            "action_taken": sum(
                by_status.get(status, 0) for status in ACTION_TAKEN_STATUS_VALUES
            ),
            "delivered": by_status.get(NdrState.DELIVERED.value, 0),
            "rto": sum(by_status.get(state.value, 0) for state in RTO_STATES),
            "closed": by_status.get(NdrState.CLOSED.value, 0),
        }
        counts["all"] = sum(by_status.values())
        return counts
