from .shipment import Shipment

from .ndr import Ndr
from .ndr_history import Ndr_history
