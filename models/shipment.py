from sqlalchemy import Column, String, Integer, Boolean, TIMESTAMP

from database import DBBaseClass, DBBase


class Shipment(DBBase, DBBaseClass):
    """
    Denormalized shipment pointer. Holds the carrier status and an NDR flag
    only; the NDR workflow state lives on the `ndr` row for the same waybill.
    """

    __tablename__ = "shipment"

    client_id = Column(Integer, nullable=False, index=True)
    waybill = Column(String(64), nullable=False, unique=True)
    order_reference = Column(String(255), nullable=True)

    current_status = Column(String(32), nullable=False, default="in_transit")
    courier_status = Column(String(128), nullable=True)
    is_ndr = Column(Boolean, nullable=False, default=False)
    expected_delivery_date = Column(TIMESTAMP(timezone=True), nullable=True)
