from enum import Enum
from types import MappingProxyType
from typing import Iterable, Mapping, Optional

from shipping_partner.delhivery.status_mapping import (
    status_mapping,
    ndr_trigger_statuses,
    rto_delivered_statuses,
)


class CanonicalStatus(str, Enum):
    IN_TRANSIT = "in_transit"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    NDR = "ndr"
    RTO = "rto"
    LOST = "lost"
    CANCELLED = "cancelled"


def _fold(raw_status: str) -> str:
    return " ".join(raw_status.split()).casefold()


class StatusNormalizer:
    """
    Maps carrier status strings onto CanonicalStatus.

    The tables are fixed at construction so a normalizer can be built per
    carrier (or per test) without touching module state. Lookups try the
    exact string first and then a case and whitespace insensitive match.
    Strings that match nothing are treated as in transit so an event is
    never dropped.
    """

    def __init__(
        self,
        mapping: Optional[Mapping[str, str]] = None,
        ndr_triggers: Optional[Iterable[str]] = None,
        rto_delivered: Optional[Iterable[str]] = None,
    ):
        mapping = status_mapping if mapping is None else mapping
        ndr_triggers = ndr_trigger_statuses if ndr_triggers is None else ndr_triggers
        rto_delivered = (
            rto_delivered_statuses if rto_delivered is None else rto_delivered
        )

        # fail fast on tables pointing at statuses we do not know
        self._mapping = MappingProxyType(
            {raw: CanonicalStatus(canonical) for raw, canonical in mapping.items()}
        )
        self._folded_mapping = MappingProxyType(
            {_fold(raw): canonical for raw, canonical in self._mapping.items()}
        )
        self._ndr_triggers = frozenset(_fold(raw) for raw in ndr_triggers)
        self._rto_delivered = frozenset(_fold(raw) for raw in rto_delivered)

    def normalize(self, raw_status: Optional[str]) -> CanonicalStatus:
        if not raw_status:
            return CanonicalStatus.IN_TRANSIT

        canonical = self._mapping.get(raw_status)
        if canonical is None:
            canonical = self._folded_mapping.get(
                _fold(raw_status), CanonicalStatus.IN_TRANSIT
            )
        return canonical

    def is_ndr_trigger(self, raw_status: Optional[str]) -> bool:
        return bool(raw_status) and _fold(raw_status) in self._ndr_triggers

    def is_rto_delivered(self, raw_status: Optional[str]) -> bool:
        return bool(raw_status) and _fold(raw_status) in self._rto_delivered


default_normalizer = StatusNormalizer()
