"""
External command capability
Strategies only need "run this argv, tell me how it exited"; tests substitute a fake.
"""

import logging
import subprocess
from dataclasses import dataclass
from typing import List, Optional

from ztwipe import config

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommandResult:
    """Exit state of one external invocation"""
    returncode: Optional[int]   # None if the binary could not be started or timed out
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0


# Distinguishes "not given" from an explicit None (wait indefinitely)
_DEFAULT_TIMEOUT = object()


class CommandRunner:
    """Synchronous spawn-and-wait runner"""

    def __init__(self, timeout: Optional[float] = _DEFAULT_TIMEOUT):
        self.timeout = config.TOOL_TIMEOUT if timeout is _DEFAULT_TIMEOUT else timeout

    def run(self, cmd: List[str]) -> CommandResult:
        """Execute command and block until it exits (or the timeout expires)"""
        logger.debug(f"Running: {' '.join(cmd)}")
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False
            )
        except subprocess.TimeoutExpired:
            logger.error(f"Command timeout after {self.timeout}s: {' '.join(cmd)}")
            return CommandResult(None, stderr="timed out", timed_out=True)
        except (OSError, ValueError) as e:
            logger.error(f"Command execution failed: {cmd[0]}: {e}")
            return CommandResult(None, stderr=str(e))

        return CommandResult(result.returncode, result.stdout, result.stderr)
