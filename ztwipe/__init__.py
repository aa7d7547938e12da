"""
ZT Wipe core
Purpose: Auditable storage erasure with hash-bound chain-of-custody certificates
"""

from ztwipe.config import TOOL_VERSION
from ztwipe.models import (
    Device,
    DeviceType,
    VerificationFailure,
    VerificationResult,
    WipeMethod,
    WipeOutcome,
    WipeResult,
    WipeStatus,
)
from ztwipe.certificate import Certificate, build_certificate
from ztwipe.custody import ChainOfCustodyClient
from ztwipe.engine import WipeOrchestrator

__version__ = "1.0.0"

__all__ = [
    "TOOL_VERSION",
    "Certificate",
    "ChainOfCustodyClient",
    "Device",
    "DeviceType",
    "VerificationFailure",
    "VerificationResult",
    "WipeMethod",
    "WipeOrchestrator",
    "WipeOutcome",
    "WipeResult",
    "WipeStatus",
    "build_certificate",
]
