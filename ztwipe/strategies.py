"""
Erasure strategies
Each strategy erases one device path per execute() call and keeps no state between calls.
Failures are raised as ErasureError subclasses naming the step that failed; a
strategy that returns normally has erased the device as far as its interface reports.
"""

import logging
from typing import Callable, Dict, List, Optional

from ztwipe import config
from ztwipe.errors import ExternalToolError, ExternalToolTimeout, IoError, UnsupportedMethodError
from ztwipe.models import WipeMethod, WipeProgress
from ztwipe.rawdev import RawDevice
from ztwipe.runner import CommandResult, CommandRunner

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[WipeProgress], None]


class ErasureStrategy:
    """Interface shared by all erasure implementations"""

    method: WipeMethod

    def execute(self, device_path: str) -> None:
        raise NotImplementedError


class ToolStrategy(ErasureStrategy):
    """Strategy that delegates the erase to an external utility"""

    def __init__(self, runner: Optional[CommandRunner] = None):
        self.runner = runner or CommandRunner()

    def _run_step(self, step: str, cmd: List[str]) -> CommandResult:
        """Run one protocol step, raising if it did not exit 0"""
        logger.info(f"[{step}] {' '.join(cmd)}")
        result = self.runner.run(cmd)
        if result.timed_out:
            raise ExternalToolTimeout(step, cmd, self.runner.timeout)
        if not result.ok:
            raise ExternalToolError(step, cmd, result.returncode, result.stderr)
        return result


class BlockOverwrite(ErasureStrategy):
    """Multi-pass zero overwrite of the whole device with a durable flush per pass

    Content is never read back; the outcome rests on write and fsync results.
    """

    method = WipeMethod.PLAIN_OVERWRITE

    def __init__(self, passes: int = config.OVERWRITE_PASSES,
                 chunk_size: int = config.OVERWRITE_CHUNK,
                 opener: Callable[[str], RawDevice] = RawDevice.open,
                 progress_callback: Optional[ProgressCallback] = None):
        if passes < 1:
            raise ValueError("passes must be at least 1")
        if chunk_size < 1:
            raise ValueError("chunk_size must be positive")
        self.passes = passes
        self.chunk_size = chunk_size
        self.opener = opener
        self.progress_callback = progress_callback

    def execute(self, device_path: str) -> None:
        zero_buf = memoryview(bytes(self.chunk_size))

        with self.opener(device_path) as device:
            size = device.size()
            logger.info(f"Overwriting {device_path}: {size} bytes, {self.passes} passes")
            progress = WipeProgress(device=device_path, current_pass=0,
                                    total_passes=self.passes, bytes_written=0,
                                    total_bytes=size)

            for pass_no in range(1, self.passes + 1):
                progress.current_pass = pass_no
                progress.bytes_written = 0
                device.rewind()
                self._write_pass(device, zero_buf, size, pass_no, progress)

                try:
                    device.sync()
                except OSError as e:
                    raise IoError(f"Flush after pass {pass_no} failed: {e}",
                                  step=f"pass-{pass_no}-flush", offset=size) from e

                logger.info(f"Pass {pass_no}/{self.passes} complete")
                self._report(progress)

    def _write_pass(self, device: RawDevice, zero_buf: memoryview, size: int,
                    pass_no: int, progress: WipeProgress) -> None:
        """Write zeros from offset 0 to size, accumulating short writes"""
        written = 0
        next_report = self.chunk_size * 64
        while written < size:
            to_write = min(self.chunk_size, size - written)
            try:
                n = device.write(zero_buf[:to_write])
            except OSError as e:
                raise IoError(f"Write failed on pass {pass_no} at offset {written}: {e}",
                              step=f"pass-{pass_no}-write", offset=written) from e
            if n <= 0:
                raise IoError(f"Device accepted no bytes on pass {pass_no} at offset {written}",
                              step=f"pass-{pass_no}-write", offset=written)
            written += n
            progress.bytes_written = written

            if written >= next_report:
                self._report(progress)
                next_report += self.chunk_size * 64

    def _report(self, progress: WipeProgress) -> None:
        if self.progress_callback:
            self.progress_callback(progress)


class EncryptedOverwrite(ErasureStrategy):
    """Key-destroying overwrite; no implementation is shipped, so it always refuses"""

    method = WipeMethod.ENCRYPTED_OVERWRITE

    def execute(self, device_path: str) -> None:
        raise UnsupportedMethodError(
            f"{self.method.name} is not supported by {config.TOOL_VERSION}; "
            f"{device_path} was not touched")


class AtaSecureErase(ToolStrategy):
    """Identify, set temporary password, erase; any non-zero exit stops the sequence

    If the erase step fails after the password has been set the drive stays
    locked with ATA_SECURITY_PASSWORD until it is erased or the password is
    disabled; the raised error carries a recovery hint.
    """

    method = WipeMethod.ATA_SECURE_ERASE

    def __init__(self, runner: Optional[CommandRunner] = None,
                 hdparm: str = config.HDPARM_BIN,
                 password: str = config.ATA_SECURITY_PASSWORD):
        super().__init__(runner)
        self.hdparm = hdparm
        self.password = password

    def execute(self, device_path: str) -> None:
        self._run_step("identify", [self.hdparm, "-I", device_path])

        self._run_step("security-set-pass",
                       [self.hdparm, "--user-master", "u",
                        "--security-set-pass", self.password, device_path])

        logger.info(f"Starting ATA Secure Erase on {device_path}")
        try:
            self._run_step("security-erase",
                           [self.hdparm, "--user-master", "u",
                            "--security-erase", self.password, device_path])
        except ExternalToolError as e:
            e.recovery_hint = (
                f"{device_path} may still be locked with user password "
                f"'{self.password}'; unlock it with: {self.hdparm} --user-master u "
                f"--security-disable {self.password} {device_path}")
            logger.warning(e.recovery_hint)
            raise

        logger.info(f"ATA Secure Erase completed on {device_path}")


class NvmeSanitize(ToolStrategy):
    """Controller sanitize: crypto erase first, block erase as fallback"""

    method = WipeMethod.FIRMWARE_ERASE

    def __init__(self, runner: Optional[CommandRunner] = None, nvme: str = config.NVME_BIN):
        super().__init__(runner)
        self.nvme = nvme

    def _sanitize_cmd(self, device_path: str, action: int) -> List[str]:
        return [self.nvme, "sanitize", device_path, "-a", str(action), "--force"]

    def execute(self, device_path: str) -> None:
        self._run_step("identify-controller", [self.nvme, "id-ctrl", device_path])

        try:
            self._run_step("sanitize-crypto-erase",
                           self._sanitize_cmd(device_path, config.NVME_SANACT_CRYPTO_ERASE))
            logger.info(f"NVMe crypto sanitize completed on {device_path}")
            return
        except ExternalToolTimeout:
            # A hung crypto erase may still be running on the controller
            raise
        except ExternalToolError as e:
            logger.warning(f"Crypto sanitize failed ({e}), falling back to block erase")
            crypto_error = e

        try:
            self._run_step("sanitize-block-erase",
                           self._sanitize_cmd(device_path, config.NVME_SANACT_BLOCK_ERASE))
        except ExternalToolTimeout:
            raise
        except ExternalToolError as e:
            raise ExternalToolError(
                e.step, e.command, e.returncode, e.stderr,
                message=f"{e}; crypto erase also failed: {crypto_error}") from e

        logger.info(f"NVMe block sanitize completed on {device_path}")


def default_strategies(runner: Optional[CommandRunner] = None,
                       progress_callback: Optional[ProgressCallback] = None
                       ) -> Dict[WipeMethod, ErasureStrategy]:
    """One strategy per WipeMethod"""
    strategies: List[ErasureStrategy] = [
        BlockOverwrite(progress_callback=progress_callback),
        EncryptedOverwrite(),
        NvmeSanitize(runner),
        AtaSecureErase(runner),
    ]
    return {s.method: s for s in strategies}
