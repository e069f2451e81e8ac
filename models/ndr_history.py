from sqlalchemy import (
    Column,
    String,
    Integer,
    ForeignKey,
    TIMESTAMP,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from database import DBBaseClass, DBBase, time_now


class Ndr_history(DBBase, DBBaseClass):
    """
    Append-only audit trail of an NDR. Rows are never edited except for
    `external_status`, which carrier status polling fills in later.
    """

    __tablename__ = "ndr_action_history"

    ndr_id = Column(Integer, ForeignKey("ndr.id"), nullable=False, index=True)

    kind = Column(String(32), nullable=False)
    action = Column(String(64), nullable=False)
    from_status = Column(String(40), nullable=True)
    to_status = Column(String(40), nullable=True)
    timestamp = Column(TIMESTAMP(timezone=True), nullable=False, default=time_now)

    external_correlation_id = Column(String(128), nullable=True, index=True)
    external_status = Column(String(64), nullable=True)
    remarks = Column(String, nullable=True)

    # idempotency key for replayable inputs (webhooks, attempt reports)
    event_key = Column(String(255), nullable=True)

    ndr = relationship("Ndr", back_populates="action_history")

    __table_args__ = (
        UniqueConstraint("ndr_id", "event_key", name="uq_ndr_history_event_key"),
    )

    def to_model(self):

        from modules.ndr_history.ndr_history_schema import Ndr_History_Model

        return Ndr_History_Model.model_validate(self)
