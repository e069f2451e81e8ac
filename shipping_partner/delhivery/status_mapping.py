from types import MappingProxyType

# carrier status string -> canonical shipment status
status_mapping = MappingProxyType(
    {
        "Manifested": "in_transit",
        "Shipped": "in_transit",
        "In Transit": "in_transit",
        "Pending": "in_transit",
        "Reached at destination": "in_transit",
        "Dispatched": "out_for_delivery",
        "Out for Delivery": "out_for_delivery",
        "Delivered": "delivered",
        "Undelivered": "ndr",
        "Customer not available": "ndr",
        "Consignee not available": "ndr",
        "Customer refused": "ndr",
        "Incomplete address": "ndr",
        "Cash not ready": "ndr",
        "Delivery attempted": "ndr",
        "RTO": "rto",
        "RTO Initiated": "rto",
        "RTO In Transit": "rto",
        "RTO Delivered": "rto",
        "Returned": "rto",
        "Lost": "lost",
        "Damaged": "lost",
        "Cancelled": "cancelled",
    }
)

# statuses that open (or add an attempt to) an NDR
ndr_trigger_statuses = frozenset(
    {
        "Undelivered",
        "Customer not available",
        "Customer refused",
        "Incomplete address",
        "Cash not ready",
        "Consignee not available",
        "Delivery attempted",
    }
)

# RTO statuses that mean the parcel is back at origin
rto_delivered_statuses = frozenset({"RTO Delivered", "Returned"})
