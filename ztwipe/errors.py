"""Error taxonomy for erasure, certificates and chain-of-custody calls"""

from typing import List, Optional


class ZtWipeError(Exception):
    """Base class for all wipe core errors"""


# --- Erasure ---

class ErasureError(ZtWipeError):
    """A strategy could not complete; the wipe attempt is a failure"""

    step: Optional[str] = None


class DeviceOpenError(ErasureError):
    """Target device cannot be opened for writing"""

    step = "open"


class SizeQueryError(ErasureError):
    """Device capacity cannot be determined"""

    step = "size-query"


class IoError(ErasureError):
    """Write or flush failed in the middle of an overwrite pass"""

    def __init__(self, message: str, step: str, offset: Optional[int] = None):
        super().__init__(message)
        self.step = step
        self.offset = offset


class ExternalToolError(ErasureError):
    """A delegated erase command exited non-zero (or could not be run)"""

    def __init__(self, step: str, command: List[str], returncode: Optional[int],
                 stderr: str = "", message: Optional[str] = None,
                 recovery_hint: Optional[str] = None):
        if message is None:
            if returncode is None:
                message = f"{step}: could not run {command[0]}"
            else:
                message = f"{step}: {command[0]} exited with status {returncode}"
            detail = stderr.strip()
            if detail:
                message = f"{message} ({detail})"
        super().__init__(message)
        self.step = step
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        self.recovery_hint = recovery_hint


class ExternalToolTimeout(ExternalToolError):
    """A delegated erase command did not exit within the caller's timeout"""

    def __init__(self, step: str, command: List[str], timeout: Optional[float]):
        limit = f" after {timeout:g}s" if timeout is not None else ""
        super().__init__(step, command, None,
                         message=f"{step}: {command[0]} timed out{limit}")
        self.timeout = timeout


class UnsupportedMethodError(ErasureError):
    """Method is not implemented by this build"""

    step = "dispatch"


# --- Boundary policy ---

class DevicePolicyError(ZtWipeError):
    """Device description forbids the requested wipe"""


class DeviceBusyError(ZtWipeError):
    """Another wipe is already in flight on the same device path"""

    def __init__(self, device_path: str):
        super().__init__(f"A wipe is already running on {device_path}")
        self.device_path = device_path


# --- Certificates ---

class SerializationError(ZtWipeError):
    """Certificate could not be encoded"""


class MalformedCertificateError(SerializationError):
    """Certificate document is not a well-formed flat JSON object"""


# --- Chain of custody ---

class CustodyError(ZtWipeError):
    """Proof recording or verification failed; says nothing about the erasure"""


class TransportError(CustodyError):
    """Service unreachable or the request did not complete"""


class ProtocolError(CustodyError):
    """Service answered with a malformed or unexpected body"""


class ServiceError(CustodyError):
    """Service answered with a status other than ok"""

    def __init__(self, status: str, message: str = ""):
        text = f"Service returned status {status!r}"
        if message:
            text = f"{text}: {message}"
        super().__init__(text)
        self.status = status
        self.service_message = message


class VerificationMismatch(CustodyError):
    """Service responded but does not know the certificate/device hash pair"""
