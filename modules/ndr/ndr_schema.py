from enum import Enum
from uuid import UUID
from typing import Optional, Any, List
from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

# schema
from schema.base import DBBaseModel
from modules.ndr_history.ndr_history_schema import Ndr_History_Model


# ============================================
# ENUMS
# ============================================


class ResolutionAction(str, Enum):
    REATTEMPT = "reattempt"
    RTO = "rto"
    NONE = "none"


class CommunicationChannel(str, Enum):
    SMS = "sms"
    CALL = "call"
    EMAIL = "email"
    WHATSAPP = "whatsapp"


class ResponseChannel(str, Enum):
    CALL = "call"
    SMS = "sms"
    EMAIL = "email"
    WHATSAPP = "whatsapp"
    PORTAL = "portal"


class CustomerPreference(str, Enum):
    REATTEMPT = "reattempt"
    RESCHEDULE = "reschedule"
    CHANGE_ADDRESS = "change_address"
    CUSTOMER_PICKUP = "customer_pickup"
    CANCEL_ORDER = "cancel_order"


# every write contract accepts exactly its own fields
class StrictModel(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)


# ============================================
# REQUESTS
# ============================================


class Ndr_filters(BaseModel):
    status: Optional[List[str]] = None
    reason_code: Optional[str] = None
    attempts_min: Optional[int] = Field(default=None, ge=0)
    attempts_max: Optional[int] = Field(default=None, ge=0)
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    search: Optional[str] = None
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=100)


class Ndr_status_update(StrictModel):
    status: str
    resolution_action: Optional[ResolutionAction] = None
    notes: Optional[str] = None


class Ndr_attempt_create(StrictModel):
    waybill: str = Field(min_length=1, max_length=64)
    order_reference: Optional[str] = None
    reason_code: Optional[str] = None
    reason_description: Optional[str] = None
    attempt_date: Optional[datetime] = None
    remarks: Optional[str] = None


class Ndr_communication_create(StrictModel):
    channel: CommunicationChannel
    status: Optional[str] = None
    content: Optional[str] = None
    agent_name: Optional[str] = None


class Ndr_rto_request(StrictModel):
    reason: str = Field(default="Multiple delivery attempts failed", min_length=1)


class Ndr_customer_response_update(StrictModel):
    preference: CustomerPreference
    channel: ResponseChannel = ResponseChannel.PORTAL
    updated_address: Optional[str] = None
    updated_phone: Optional[str] = Field(default=None, pattern=r"^[6-9]\d{9}$")
    preferred_delivery_date: Optional[date] = None
    notes: Optional[str] = None


class Ndr_reopen_request(StrictModel):
    reason: str


class Ndr_note_create(StrictModel):
    note: str = Field(min_length=1)


class Ndr_action_request(StrictModel):
    waybill: str = Field(min_length=1)
    action: str
    reason: Optional[str] = None


class Bulk_Ndr_action_request(StrictModel):
    waybills: List[str] = Field(min_length=1, max_length=100)
    action: str
    reason: Optional[str] = None

    @field_validator("waybills")
    @classmethod
    def strip_waybills(cls, waybills: List[str]) -> List[str]:
        return [waybill.strip() for waybill in waybills]


# ============================================
# WEBHOOK
# ============================================


class Ndr_webhook_scan(BaseModel):
    date: Optional[str] = None
    location: Optional[str] = None
    status: Optional[str] = None
    instructions: Optional[str] = None


class Ndr_webhook_event(BaseModel):
    waybill: str = Field(min_length=1, max_length=64)
    status: str = Field(min_length=1)
    nsl_code: Optional[str] = None
    expected_delivery: Optional[datetime] = None
    scans: List[Ndr_webhook_scan] = []

    @property
    def last_scan_timestamp(self) -> str:
        if not self.scans:
            return ""
        return self.scans[-1].date or ""

    @property
    def event_key(self) -> str:
        return "{}|{}|{}".format(self.waybill, self.status, self.last_scan_timestamp)


# ============================================
# RESPONSES
# ============================================


class Ndr_Metrics_Model(BaseModel):
    days_in_ndr: int
    total_attempts: int
    reopened_count: int
    escalation_level: str
    first_contact_date: Optional[datetime] = None
    last_contact_date: Optional[datetime] = None


class Ndr_Auto_Resolution_Model(BaseModel):
    auto_rto_eligible: bool
    max_attempts_reached: bool
    aging_threshold_crossed: bool


class Ndr_Summary_Model(DBBaseModel):
    client_id: int
    waybill: str
    order_reference: Optional[str] = None
    reason_code: Optional[str] = None
    reason_description: Optional[str] = None
    status: str
    resolution_action: Optional[str] = None
    resolution_notes: Optional[str] = None
    resolution_date: Optional[datetime] = None
    attempt_count: int
    next_attempt_date: Optional[date] = None
    ndr_date: datetime
    last_attempt_date: Optional[datetime] = None
    customer_response: Optional[Any] = None
    rto_info: Optional[Any] = None
    metrics: Ndr_Metrics_Model
    auto_resolution: Ndr_Auto_Resolution_Model
    version: int


class Ndr_Response_Model(Ndr_Summary_Model):
    action_history: List[Ndr_History_Model] = []


class Bulk_Item_Outcome_Model(BaseModel):
    id: str
    success: bool
    correlation_id: Optional[str] = None
    message: Optional[str] = None
