"""
ZT Wipe configuration
Module-level defaults; each component also accepts explicit overrides.
"""

import os
from typing import Optional


def _env_float(name: str, default: Optional[float]) -> Optional[float]:
    value = os.environ.get(name)
    if value is None or value.strip() == "":
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"{name} must be a number of seconds, got {value!r}")


# --- Application ---
APP_NAME = "zt-wipe"
TOOL_VERSION = "zt-wipe 1.0"

# --- Logging ---
LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'
LOG_LEVEL = os.environ.get("ZTWIPE_LOG_LEVEL", "INFO")
LOG_FILE = os.environ.get("ZTWIPE_LOG_FILE") or None

# --- Chain-of-custody service ---
CHAIN_SERVICE_URL = os.environ.get("ZTWIPE_CHAIN_URL", "http://127.0.0.1:8080")
CHAIN_TIMEOUT = _env_float("ZTWIPE_CHAIN_TIMEOUT", 10.0)
RECORD_ENDPOINT = "/record-wipe"
VERIFY_ENDPOINT = "/verify-wipe"

# --- External tools ---
HDPARM_BIN = os.environ.get("ZTWIPE_HDPARM", "hdparm")
NVME_BIN = os.environ.get("ZTWIPE_NVME", "nvme")
# None waits for the child to exit; security erase can take hours on large media
TOOL_TIMEOUT = _env_float("ZTWIPE_TOOL_TIMEOUT", None)

# Single-session handshake token, invalidated by the erase itself
ATA_SECURITY_PASSWORD = "wipe"

# NVMe sanitize actions (nvme-cli -a)
NVME_SANACT_BLOCK_ERASE = 2
NVME_SANACT_CRYPTO_ERASE = 4

# --- Block overwrite ---
OVERWRITE_PASSES = 3
OVERWRITE_CHUNK = 1024 * 1024  # 1 MiB

# --- Certificates ---
CERT_DIR = os.environ.get("ZTWIPE_CERT_DIR", "./certificates")
