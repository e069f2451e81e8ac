from typing import Callable, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from context_manager.context import context_user_data
from database import SessionLocal

from logger import logger

# models
from models import Ndr, Ndr_history

from utils.exception_handler import ValidationError


PENDING_EXTERNAL_STATUS = "PENDING"


class NdrHistoryService:
    """
    Queries and the single permitted in-place update on the NDR audit trail.
    Entries are appended by the aggregate store together with the state
    change they record; nothing here inserts or deletes.
    """

    @staticmethod
    def reconcile(
        correlation_id: str,
        external_status: str,
        waybills: Optional[List[str]] = None,
        session_factory: Callable[[], Session] = SessionLocal,
        client_id: Optional[int] = None,
    ) -> int:
        """
        Write `external_status` onto the entries created by one carrier
        request. Restricted to `waybills` and to the NDRs of `client_id` when
        given. Returns the number of matching entries; replaying the same reconciliation matches the same
        rows and leaves them unchanged.
        """
        if not correlation_id or not str(correlation_id).strip():
            raise ValidationError("correlation_id is required")
        if not external_status or not str(external_status).strip():
            raise ValidationError("external_status is required")

        db = session_factory()
        try:
            query = db.query(Ndr_history).filter(
                Ndr_history.external_correlation_id == correlation_id
            )
            conditions = []
            if waybills:
                conditions.append(Ndr.waybill.in_(waybills))
            if client_id is not None:
                conditions.append(Ndr.client_id == client_id)
            if conditions:
                query = query.filter(
                    Ndr_history.ndr_id.in_(select(Ndr.id).where(*conditions))
                )

            matched = query.update(
                {Ndr_history.external_status: external_status},
                synchronize_session=False,
            )
            db.commit()
        finally:
            db.close()

        logger.info(
            extra=context_user_data.get(),
            msg="Reconciled {} history entries for {} to {}".format(
                matched, correlation_id, external_status
            ),
        )
        return matched

    @staticmethod
    def pending_correlation_ids(
        session_factory: Callable[[], Session] = SessionLocal,
        limit: int = 100,
    ) -> List[str]:
        db = session_factory()
        try:
            rows = (
                db.query(Ndr_history.external_correlation_id)
                .filter(
                    Ndr_history.external_correlation_id.isnot(None),
                    Ndr_history.external_status == PENDING_EXTERNAL_STATUS,
                )
                .distinct()
                .limit(limit)
                .all()
            )
        finally:
            db.close()
        return [row[0] for row in rows]

    @staticmethod
    def get_by_correlation_id(
        correlation_id: str,
        session_factory: Callable[[], Session] = SessionLocal,
    ) -> List[Ndr_history]:
        db = session_factory()
        try:
            return (
                db.query(Ndr_history)
                .filter(Ndr_history.external_correlation_id == correlation_id)
                .order_by(Ndr_history.id)
                .all()
            )
        finally:
            db.close()

    @staticmethod
    def belongs_to_client(
        correlation_id: str,
        client_id: int,
        session_factory: Callable[[], Session] = SessionLocal,
    ) -> bool:
        """True when any entry of this carrier request sits on the client's NDRs."""
        db = session_factory()
        try:
            entry = (
                db.query(Ndr_history.id)
                .join(Ndr, Ndr.id == Ndr_history.ndr_id)
                .filter(
                    Ndr_history.external_correlation_id == correlation_id,
                    Ndr.client_id == client_id,
                )
                .first()
            )
        finally:
            db.close()
        return entry is not None
