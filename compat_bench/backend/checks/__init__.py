from .api import Check, CheckContext, PendingRequest
from .ble import BleScanCheck, BleSecureClientConnectCheck
from .p2p import P2pServiceDiscoveryCheck, ServiceRequest, ServiceType

__all__ = [
    "BleScanCheck",
    "BleSecureClientConnectCheck",
    "Check",
    "CheckContext",
    "P2pServiceDiscoveryCheck",
    "PendingRequest",
    "ServiceRequest",
    "ServiceType",
]
