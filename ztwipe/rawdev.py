"""Scoped raw-device handle used by the block overwrite strategy"""

import fcntl
import logging
import os
import stat
import struct
from typing import Optional

from ztwipe.errors import DeviceOpenError, IoError, SizeQueryError

logger = logging.getLogger(__name__)

# _IOR(0x12, 114, size_t) from <linux/fs.h>
BLKGETSIZE64 = 0x80081272


class RawDevice:
    """Exclusive writable handle on a block device or disk image

    Always use as a context manager so the descriptor is released on every exit path.
    """

    def __init__(self, path: str):
        self.path = path
        self.fd: Optional[int] = None

    @classmethod
    def open(cls, path: str) -> "RawDevice":
        device = cls(path)
        try:
            device.fd = os.open(path, os.O_WRONLY | os.O_SYNC)
        except (OSError, ValueError) as e:
            raise DeviceOpenError(f"Cannot open {path} for writing: {e}") from e
        return device

    def __enter__(self) -> "RawDevice":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def size(self) -> int:
        """Capacity in bytes; BLKGETSIZE64 for block devices, st_size for images"""
        try:
            st = os.fstat(self.fd)
            if stat.S_ISREG(st.st_mode):
                return st.st_size
            buf = fcntl.ioctl(self.fd, BLKGETSIZE64, b"\0" * 8)
        except OSError as e:
            raise SizeQueryError(f"Cannot determine size of {self.path}: {e}") from e
        return struct.unpack("Q", buf)[0]

    def rewind(self) -> None:
        try:
            os.lseek(self.fd, 0, os.SEEK_SET)
        except OSError as e:
            raise IoError(f"Seek to start of {self.path} failed: {e}", step="seek", offset=0) from e

    def write(self, data) -> int:
        """Single write call; may return fewer bytes than requested"""
        return os.write(self.fd, data)

    def sync(self) -> None:
        os.fsync(self.fd)

    def close(self) -> None:
        if self.fd is not None:
            try:
                os.close(self.fd)
            except OSError as e:
                logger.warning(f"Closing {self.path} failed: {e}")
            finally:
                self.fd = None
