"""
Wipe Orchestrator
Selects the strategy for a method, brackets it with timestamps and turns its
outcome into a WipeResult. Each call runs Idle -> Running -> Succeeded/Failed;
nothing is retried automatically.
"""

import logging
import os
import threading
import time
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, Optional, Set, TYPE_CHECKING

from ztwipe import config
from ztwipe.certificate import build_certificate
from ztwipe.errors import (
    CustodyError,
    DeviceBusyError,
    DevicePolicyError,
    ErasureError,
    UnsupportedMethodError,
)
from ztwipe.models import Device, WipeMethod, WipeOutcome, WipeResult, WipeStatus
from ztwipe.strategies import ErasureStrategy, default_strategies

if TYPE_CHECKING:
    from ztwipe.custody import ChainOfCustodyClient

logger = logging.getLogger(__name__)


class DeviceGuard:
    """At most one in-flight wipe per device; aliases of one node share a slot"""

    def __init__(self):
        self._lock = threading.Lock()
        self._active: Set[str] = set()

    @staticmethod
    def _key(device_path: str) -> str:
        try:
            return os.path.realpath(device_path)
        except ValueError:
            # Embedded NUL: names no node, so it can only alias itself
            return device_path

    @contextmanager
    def hold(self, device_path: str) -> Iterator[None]:
        key = self._key(device_path)
        with self._lock:
            if key in self._active:
                raise DeviceBusyError(device_path)
            self._active.add(key)
        try:
            yield
        finally:
            with self._lock:
                self._active.discard(key)

    def is_busy(self, device_path: str) -> bool:
        with self._lock:
            return self._key(device_path) in self._active


class WipeOrchestrator:
    """Dispatches wipes to erasure strategies and reports the real outcome"""

    def __init__(self, strategies: Optional[Dict[WipeMethod, ErasureStrategy]] = None,
                 guard: Optional[DeviceGuard] = None,
                 clock: Callable[[], float] = time.time,
                 tool_version: str = config.TOOL_VERSION):
        self.strategies = default_strategies() if strategies is None else dict(strategies)
        self.guard = guard or DeviceGuard()
        self.clock = clock
        self.tool_version = tool_version

    def _now(self) -> int:
        return int(self.clock())

    def wipe(self, device_path: str, method: WipeMethod, model: str = "",
             serial: str = "", size: int = 0) -> WipeResult:
        """Run one erasure attempt on device_path

        Raises DeviceBusyError if another wipe holds the same path; every
        erasure failure is reported through the returned WipeResult.
        """
        with self.guard.hold(device_path):
            start_time = self._now()
            logger.info(f"Starting {getattr(method, 'name', method)} wipe of {device_path}")

            error: Optional[ErasureError] = None
            try:
                strategy = self.strategies.get(method)
                if strategy is None:
                    raise UnsupportedMethodError(f"No erasure strategy for method {method!r}")
                strategy.execute(device_path)
            except ErasureError as e:
                error = e
            finally:
                # Timing brackets the whole attempt, including aborts
                end_time = max(self._now(), start_time)

            result = WipeResult(
                device_path=device_path,
                device_model=model,
                device_serial=serial,
                device_size=size,
                method=method,
                status=WipeStatus.SUCCESS if error is None else WipeStatus.FAILURE,
                start_time=start_time,
                end_time=end_time,
                tool_version=self.tool_version,
                error=str(error) if error else None,
                failed_step=error.step if error else None,
            )
            if result.succeeded:
                logger.info(f"Wipe of {device_path} completed in {result.duration}s")
            else:
                logger.error(f"Wipe of {device_path} failed at step "
                             f"'{error.step or 'unknown'}': {error}")
            return result

    def wipe_device(self, device: Device, method: WipeMethod) -> WipeResult:
        """Wipe a described device after checking it offers the method"""
        if device.is_read_only:
            raise DevicePolicyError(f"{device.path} is read-only; refusing to wipe")
        if method not in device.supported_methods:
            raise DevicePolicyError(
                f"{device.path} does not offer {getattr(method, 'name', method)}")

        return self.wipe(device.path, method, model=device.model,
                         serial=device.serial, size=device.size_bytes)

    def wipe_and_certify(self, device: Device, method: WipeMethod,
                         client: Optional["ChainOfCustodyClient"] = None) -> WipeOutcome:
        """Wipe, build the certificate and, for a successful wipe, record its proof

        A recording failure is reported on the outcome and never changes the
        erasure status.
        """
        result = self.wipe_device(device, method)
        certificate = build_certificate(result)

        if not result.succeeded or client is None:
            return WipeOutcome(result=result, certificate=certificate)

        try:
            client.record(certificate)
        except CustodyError as e:
            logger.error(f"Erasure of {device.path} succeeded but proof recording failed: {e}")
            return WipeOutcome(result=result, certificate=certificate,
                               recorded=False, record_error=str(e))

        return WipeOutcome(result=result, certificate=certificate, recorded=True)
