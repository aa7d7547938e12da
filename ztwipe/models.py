"""
Value types shared by the orchestrator, certificate builder and custody client
All of them are immutable once built and carry no references to each other's state.
"""

from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from ztwipe.certificate import Certificate


class WipeMethod(Enum):
    """Erasure methods; the value is the ordinal sent on the wire"""
    PLAIN_OVERWRITE = 0
    ENCRYPTED_OVERWRITE = 1
    FIRMWARE_ERASE = 2      # NVMe sanitize
    ATA_SECURE_ERASE = 3

    @property
    def ordinal(self) -> int:
        return self.value


class DeviceType(Enum):
    """Inferred device class, as reported by device discovery"""
    NVME = "NVMe"
    ATA_SCSI = "ATA/SCSI"
    SD_MMC = "SD/MMC"
    UNKNOWN = "Unknown"


class WipeStatus(Enum):
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass(frozen=True)
class Device:
    """Caller-supplied description of a device; the core never discovers devices"""
    name: str
    path: str
    size_bytes: int
    is_removable: bool = False
    is_read_only: bool = False
    model: str = ""
    serial: str = ""
    device_type: DeviceType = DeviceType.UNKNOWN
    supported_methods: FrozenSet[WipeMethod] = frozenset()

    def __post_init__(self):
        # Accept any iterable of methods
        object.__setattr__(self, "supported_methods", frozenset(self.supported_methods))
        if self.is_read_only and self.supported_methods:
            raise ValueError(f"Read-only device {self.path} cannot offer wipe methods")
        if self.size_bytes < 0:
            raise ValueError(f"Device size must not be negative: {self.size_bytes}")

    def supports(self, method: WipeMethod) -> bool:
        return not self.is_read_only and method in self.supported_methods


@dataclass(frozen=True)
class WipeResult:
    """Outcome of one erasure attempt"""
    device_path: str
    device_model: str
    device_serial: str
    device_size: int
    method: WipeMethod
    status: WipeStatus
    start_time: int
    end_time: int
    tool_version: str
    # Diagnostics only; never part of the certificate
    error: Optional[str] = None
    failed_step: Optional[str] = None

    def __post_init__(self):
        if self.end_time < self.start_time:
            raise ValueError("end_time must not precede start_time")

    @property
    def succeeded(self) -> bool:
        return self.status == WipeStatus.SUCCESS

    @property
    def duration(self) -> int:
        return self.end_time - self.start_time


@dataclass
class WipeProgress:
    """Overwrite progress tracking"""
    device: str
    current_pass: int
    total_passes: int
    bytes_written: int
    total_bytes: int

    @property
    def percent(self) -> float:
        if self.total_bytes == 0:
            return 100.0
        return (self.bytes_written / self.total_bytes) * 100


@dataclass(frozen=True)
class ChainRequest:
    """Wire object sent to the recording service"""
    cert_hash: str
    device_hash: str
    wipe_method: int

    def record_payload(self) -> dict:
        return {
            "cert_hash": self.cert_hash,
            "device_hash": self.device_hash,
            "wipe_method": self.wipe_method,
        }

    def verify_payload(self) -> dict:
        return {
            "device_hash": self.device_hash,
            "cert_hash": self.cert_hash,
        }


class VerificationFailure(Enum):
    """Distinct reasons a certificate could not be verified"""
    NOT_VERIFIED = "not_verified"
    MALFORMED_DOCUMENT = "malformed_document"
    TRANSPORT = "transport"
    SERVICE_ERROR = "service_error"
    PROTOCOL = "protocol"


@dataclass(frozen=True)
class VerificationResult:
    verified: bool
    error_message: Optional[str] = None
    timestamp: Optional[int] = None
    wipe_method: Optional[WipeMethod] = None
    failure: Optional[VerificationFailure] = None

    @classmethod
    def failed(cls, failure: VerificationFailure, message: str) -> "VerificationResult":
        return cls(verified=False, error_message=message, failure=failure)


@dataclass(frozen=True)
class WipeOutcome:
    """A wipe attempt together with its certificate and proof-recording state

    ``result.status`` describes the data; ``recorded``/``record_error`` describe
    the proof. The two are never merged.
    """
    result: WipeResult
    certificate: "Certificate"
    recorded: bool = False
    record_error: Optional[str] = None

    @property
    def proof_pending(self) -> bool:
        return self.result.succeeded and not self.recorded
