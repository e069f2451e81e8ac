import os
import uuid as uuid_lib
from contextlib import contextmanager
from datetime import datetime, time, timedelta
from typing import Callable, List, Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from context_manager.context import context_user_data
from database import SessionLocal, time_now, UTC
from logger import logger

# models
from models import Ndr, Ndr_history

from utils.exception_handler import ConflictError, NotFoundError, ValidationError


NDR_MAX_WRITE_RETRIES = int(os.environ.get("NDR_MAX_WRITE_RETRIES", "3"))


def parse_identifier(identifier) -> Tuple[Optional[uuid_lib.UUID], Optional[str]]:
    """An NDR is addressed either by its uuid or by its waybill."""
    if isinstance(identifier, uuid_lib.UUID):
        return identifier, None

    identifier = str(identifier or "").strip()
    if not identifier:
        raise ValidationError("NDR identifier is required")

    try:
        return uuid_lib.UUID(identifier), None
    except ValueError:
        return None, identifier


def history_entry(
    kind: str,
    action: str,
    from_status: Optional[str] = None,
    to_status: Optional[str] = None,
    remarks: Optional[str] = None,
    external_correlation_id: Optional[str] = None,
    external_status: Optional[str] = None,
    event_key: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> Ndr_history:
    return Ndr_history(
        kind=kind,
        action=action,
        from_status=from_status,
        to_status=to_status,
        remarks=remarks,
        external_correlation_id=external_correlation_id,
        external_status=external_status,
        event_key=event_key,
        timestamp=timestamp or time_now(),
    )


def has_event(ndr: Ndr, event_key: Optional[str]) -> bool:
    if not event_key:
        return False
    return any(entry.event_key == event_key for entry in ndr.action_history)


class NdrStore:
    """
    Persistence for the NDR aggregate.

    Every write is a read-modify-write cycle in its own session. The `version`
    column makes the UPDATE conditional, so a concurrent writer surfaces as a
    StaleDataError and the whole cycle is replayed on fresh state, up to
    `max_retries` times. History entries are appended through the aggregate
    and commit together with the state they describe.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        max_retries: int = NDR_MAX_WRITE_RETRIES,
    ):
        self.session_factory = session_factory
        self.max_retries = max(1, max_retries)

    @contextmanager
    def session(self):
        db = self.session_factory()
        try:
            yield db
        finally:
            db.close()

    # ============================================
    # READS
    # ============================================

    @staticmethod
    def _scoped(db: Session, client_id: Optional[int] = None):
        query = db.query(Ndr).filter(Ndr.is_deleted.is_(False))
        if client_id is not None:
            query = query.filter(Ndr.client_id == client_id)
        return query

    def _lookup(self, db: Session, identifier, client_id: Optional[int] = None):
        ndr_uuid, waybill = parse_identifier(identifier)
        query = self._scoped(db, client_id)
        if ndr_uuid is not None:
            return query.filter(Ndr.uuid == ndr_uuid).first()
        return query.filter(Ndr.waybill == waybill).first()

    def find(self, identifier, client_id: Optional[int] = None) -> Optional[Ndr]:
        with self.session() as db:
            return self._lookup(db, identifier, client_id)

    def get(self, identifier, client_id: Optional[int] = None) -> Ndr:
        ndr = self.find(identifier, client_id)
        if ndr is None:
            raise NotFoundError(
                "NDR not found", data={"identifier": str(identifier)}
            )
        return ndr

    def list(
        self,
        client_id: Optional[int] = None,
        status: Optional[List[str]] = None,
        reason_code: Optional[str] = None,
        attempts_min: Optional[int] = None,
        attempts_max: Optional[int] = None,
        date_from=None,
        date_to=None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Tuple[List[Ndr], int]:
        with self.session() as db:
            query = self._scoped(db, client_id)

            if status:
                query = query.filter(Ndr.status.in_(status))
            if reason_code:
                query = query.filter(Ndr.reason_code == reason_code)
            if attempts_min is not None:
                query = query.filter(Ndr.attempt_count >= attempts_min)
            if attempts_max is not None:
                query = query.filter(Ndr.attempt_count <= attempts_max)
            if date_from is not None:
                query = query.filter(
                    Ndr.ndr_date >= UTC.localize(datetime.combine(date_from, time.min))
                )
            if date_to is not None:
                # inclusive of the whole end day
                query = query.filter(
                    Ndr.ndr_date
                    < UTC.localize(datetime.combine(date_to, time.min))
                    + timedelta(days=1)
                )
            if search:
                pattern = "%{}%".format(search.strip())
                query = query.filter(
                    or_(
                        Ndr.waybill.ilike(pattern),
                        Ndr.order_reference.ilike(pattern),
                        Ndr.reason_description.ilike(pattern),
                    )
                )

            total = query.count()
            items = (
                query.order_by(Ndr.ndr_date.desc(), Ndr.id.desc())
                .offset((page - 1) * limit)
                .limit(limit)
                .all()
            )
            return items, total

    # ============================================
    # WRITES
    # ============================================

    def update(
        self,
        identifier,
        mutate: Callable[[Session, Ndr], None],
        client_id: Optional[int] = None,
    ) -> Ndr:
        """
        Load the aggregate, apply `mutate` and commit conditioned on the
        version that was read. `mutate` may raise an NdrError to abort, or
        return False when there is nothing to write (replayed events); it is
        re-run against fresh state on every retry.
        """
        for attempt in range(1, self.max_retries + 1):
            with self.session() as db:
                ndr = self._lookup(db, identifier, client_id)
                if ndr is None:
                    raise NotFoundError(
                        "NDR not found", data={"identifier": str(identifier)}
                    )

                if mutate(db, ndr) is False:
                    return ndr

                # the version only moves when the ndr row itself is written
                ndr.updated_at = time_now()

                try:
                    db.commit()
                    return ndr
                except (StaleDataError, IntegrityError) as e:
                    db.rollback()
                    logger.warning(
                        extra=context_user_data.get(),
                        msg="NDR write conflict on {} (attempt {}/{}): {}".format(
                            identifier, attempt, self.max_retries, type(e).__name__
                        ),
                    )

        raise ConflictError(
            "NDR was modified concurrently, please re-fetch and retry",
            data={"identifier": str(identifier)},
        )

    def create_or_update(
        self,
        waybill: str,
        build: Callable[[], Ndr],
        mutate: Callable[[Session, Ndr], None],
    ) -> Tuple[Ndr, bool]:
        """
        Create the aggregate for `waybill` if absent, otherwise run `mutate`
        on the existing one. Returns (ndr, created).

        Two first-seen events for the same waybill race on the unique waybill
        constraint; the loser rolls back and takes the update path.
        """
        with self.session() as db:
            existing = self._lookup(db, waybill)

        if existing is None:
            with self.session() as db:
                ndr = build()
                db.add(ndr)
                try:
                    db.commit()
                    logger.info(
                        extra=context_user_data.get(),
                        msg="NDR created for waybill {}".format(waybill),
                    )
                    return ndr, True
                except IntegrityError:
                    db.rollback()
                    logger.info(
                        extra=context_user_data.get(),
                        msg="NDR for waybill {} created concurrently, updating instead".format(
                            waybill
                        ),
                    )

        return self.update(waybill, mutate), False
