from datetime import timedelta
from sqlalchemy import (
    Column,
    String,
    Integer,
    Date,
    TIMESTAMP,
    JSON,
    Index,
)
from sqlalchemy.orm import relationship

from database import DBBaseClass, DBBase, time_now, as_utc

from data.ndr_policy import (
    aging_threshold_days,
    auto_rto_eligible_attempts,
    auto_rto_eligible_days,
    escalation_l2_attempt_count,
    max_attempts_reached_count,
)


def days_since(started, now=None) -> int:
    """Whole days elapsed since `started`, never negative."""
    started = as_utc(started)
    if started is None:
        return 0
    now = now or time_now()
    return max((now - started) // timedelta(days=1), 0)


class Ndr(DBBase, DBBaseClass):
    """
    The NDR aggregate: one row per waybill, owned exclusively by the NDR
    workflow. Shipments only point at it through the waybill.
    """

    __tablename__ = "ndr"

    # ndr details
    client_id = Column(Integer, nullable=False, index=True)
    waybill = Column(String(64), nullable=False, unique=True)
    order_reference = Column(String(255), nullable=True, index=True)

    reason_code = Column(String(32), nullable=True, index=True)
    reason_description = Column(String, nullable=True)

    status = Column(String(40), nullable=False, default="new_ndr", index=True)
    resolution_action = Column(String(20), nullable=True)
    resolution_notes = Column(String, nullable=True)
    resolution_date = Column(TIMESTAMP(timezone=True), nullable=True)

    attempt_count = Column(Integer, nullable=False, default=1)
    next_attempt_date = Column(Date, nullable=True)

    ndr_date = Column(TIMESTAMP(timezone=True), nullable=False, default=time_now)
    last_attempt_date = Column(TIMESTAMP(timezone=True), nullable=True)

    customer_response = Column(JSON, nullable=True)
    rto_info = Column(JSON, nullable=True)

    reopened_count = Column(Integer, nullable=False, default=0)

    first_contact_date = Column(TIMESTAMP(timezone=True), nullable=True)
    last_contact_date = Column(TIMESTAMP(timezone=True), nullable=True)

    version = Column(Integer, nullable=False)

    action_history = relationship(
        "Ndr_history",
        back_populates="ndr",
        order_by="Ndr_history.id",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (Index("ix_ndr_client_status", "client_id", "status"),)

    def days_in_ndr(self, now=None) -> int:
        return days_since(self.ndr_date, now)

    @property
    def escalation_level(self) -> str:
        if (self.attempt_count or 0) >= escalation_l2_attempt_count:
            return "L2"
        return "L1"

    @property
    def metrics(self) -> dict:
        return {
            "days_in_ndr": self.days_in_ndr(),
            "total_attempts": self.attempt_count,
            "reopened_count": self.reopened_count,
            "escalation_level": self.escalation_level,
            "first_contact_date": self.first_contact_date,
            "last_contact_date": self.last_contact_date,
        }

    @property
    def auto_resolution(self) -> dict:
        days = self.days_in_ndr()
        attempts = self.attempt_count or 0
        return {
            "auto_rto_eligible": days >= auto_rto_eligible_days
            or attempts >= auto_rto_eligible_attempts,
            "max_attempts_reached": attempts >= max_attempts_reached_count,
            "aging_threshold_crossed": days >= aging_threshold_days,
        }

    def to_model(self):

        from modules.ndr.ndr_schema import Ndr_Response_Model

        return Ndr_Response_Model.model_validate(self)
