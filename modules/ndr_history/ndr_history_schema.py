from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict

# schema
from schema.base import DBBaseModel


class Ndr_History_Model(DBBaseModel):
    ndr_id: int
    kind: str
    action: str
    from_status: Optional[str] = None
    to_status: Optional[str] = None
    timestamp: datetime
    external_correlation_id: Optional[str] = None
    external_status: Optional[str] = None
    remarks: Optional[str] = None


class Ndr_Reconcile_Model(BaseModel):
    correlation_id: str
    external_status: str
    waybills: List[str] = []

    model_config = ConfigDict(extra="forbid")
