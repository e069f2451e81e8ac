from .delhivery import Delhivery, delhivery_client
from .status_mapping import status_mapping, ndr_trigger_statuses, rto_delivered_statuses

__all__ = [
    "Delhivery",
    "delhivery_client",
    "status_mapping",
    "ndr_trigger_statuses",
    "rto_delivered_statuses",
]
