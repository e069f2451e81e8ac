from .ndr_history_service import NdrHistoryService
from .ndr_history_schema import Ndr_History_Model, Ndr_Reconcile_Model

__all__ = [
    "NdrHistoryService",
    "Ndr_History_Model",
    "Ndr_Reconcile_Model",
]
