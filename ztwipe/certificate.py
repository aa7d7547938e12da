"""
Certificate Builder
Renders a WipeResult into the canonical certificate document and binds it with
two SHA-256 hashes:

    cert_hash   = SHA256(document bytes)
    device_hash = SHA256("<model>|<serial>|<size>")

The document is a flat JSON object with lexicographically ordered keys and no
whitespace, encoded as UTF-8. Those exact bytes are the proof, so they are
written and read back without re-serialisation.
"""

import base64
import binascii
import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Union

from Crypto.Hash import SHA256
from Crypto.PublicKey import RSA
from Crypto.Signature import pkcs1_15

from ztwipe import config
from ztwipe.errors import MalformedCertificateError, SerializationError
from ztwipe.models import ChainRequest, WipeMethod, WipeResult, WipeStatus

logger = logging.getLogger(__name__)

IDENTITY_SEPARATOR = "|"

# Field name -> accepted JSON type
CERT_FIELDS = {
    "device_path": str,
    "device_model": str,
    "device_serial": str,
    "device_size": int,
    "wipe_method": int,
    "wipe_status": bool,
    "start_time": int,
    "end_time": int,
    "tool_version": str,
}


@dataclass(frozen=True)
class Certificate:
    document: bytes
    cert_hash: bytes
    device_hash: bytes
    wipe_method: WipeMethod
    wipe_status: bool
    device_serial: str

    @property
    def cert_hash_hex(self) -> str:
        return to_hex(self.cert_hash)

    @property
    def device_hash_hex(self) -> str:
        return to_hex(self.device_hash)

    def chain_request(self) -> ChainRequest:
        return ChainRequest(cert_hash=self.cert_hash_hex,
                            device_hash=self.device_hash_hex,
                            wipe_method=self.wipe_method.ordinal)

    def as_dict(self) -> Dict[str, Any]:
        return json.loads(self.document.decode("utf-8"))


def sha256(data: bytes) -> bytes:
    return SHA256.new(data).digest()


def to_hex(digest: bytes) -> str:
    """Wire form of a hash: 0x-prefixed lowercase hex"""
    return "0x" + binascii.hexlify(digest).decode("ascii")


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def canonical_bytes(fields: Dict[str, Any]) -> bytes:
    """Compact, key-sorted JSON encoding"""
    try:
        text = json.dumps(fields, sort_keys=True, separators=(",", ":"),
                          ensure_ascii=False, allow_nan=False)
        return text.encode("utf-8")
    except (TypeError, ValueError, UnicodeEncodeError) as e:
        raise SerializationError(f"Cannot encode certificate: {e}") from e


def device_identity(model: str, serial: str, size: int) -> bytes:
    return IDENTITY_SEPARATOR.join([model, serial, str(size)]).encode("utf-8")


def device_hash(model: str, serial: str, size: int) -> bytes:
    """Identity hash of a physical device, independent of any wipe"""
    return sha256(device_identity(model, serial, size))


def certificate_fields(result: WipeResult) -> Dict[str, Any]:
    if not isinstance(result.method, WipeMethod):
        raise SerializationError(f"Unknown wipe method {result.method!r}")

    fields = {
        "device_path": result.device_path,
        "device_model": result.device_model,
        "device_serial": result.device_serial,
        "device_size": result.device_size,
        "wipe_method": result.method.ordinal,
        "wipe_status": result.status == WipeStatus.SUCCESS,
        "start_time": result.start_time,
        "end_time": result.end_time,
        "tool_version": result.tool_version,
    }
    _check_types(fields, SerializationError)
    if fields["device_size"] < 0 or fields["start_time"] < 0:
        raise SerializationError("Sizes and timestamps must be non-negative")
    return fields


def _check_types(fields: Dict[str, Any], error_cls) -> None:
    for name, expected in CERT_FIELDS.items():
        if name not in fields:
            raise error_cls(f"Missing field '{name}'")
        value = fields[name]
        ok = _is_int(value) if expected is int else isinstance(value, expected)
        if not ok:
            raise error_cls(f"Field '{name}' must be {expected.__name__}, "
                            f"got {type(value).__name__}")


def build_certificate(result: WipeResult) -> Certificate:
    """Pure: the same WipeResult always yields byte-identical output"""
    fields = certificate_fields(result)
    document = canonical_bytes(fields)
    return Certificate(
        document=document,
        cert_hash=sha256(document),
        device_hash=device_hash(result.device_model, result.device_serial, result.device_size),
        wipe_method=result.method,
        wipe_status=fields["wipe_status"],
        device_serial=result.device_serial,
    )


def parse_certificate_document(raw: bytes) -> Dict[str, Any]:
    """Decode an untrusted certificate document and check its shape"""
    try:
        fields = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, ValueError, RecursionError) as e:
        raise MalformedCertificateError(f"Certificate is not valid UTF-8 JSON: {e}") from e

    if not isinstance(fields, dict):
        raise MalformedCertificateError("Certificate must be a JSON object")
    _check_types(fields, MalformedCertificateError)
    return fields


def chain_request_for_document(raw: bytes) -> ChainRequest:
    """Recompute both hashes of a stored document

    cert_hash covers the raw bytes as given; device_hash comes from the declared
    identity fields.
    """
    fields = parse_certificate_document(raw)
    identity_hash = device_hash(fields["device_model"], fields["device_serial"],
                                fields["device_size"])
    return ChainRequest(cert_hash=to_hex(sha256(raw)),
                        device_hash=to_hex(identity_hash),
                        wipe_method=fields["wipe_method"])


# --- Persistence ---

def certificate_filename(certificate: Certificate, when: Optional[datetime] = None) -> str:
    when = when or datetime.now(timezone.utc)
    serial = "".join(c if c.isalnum() or c in "-_" else "_" for c in certificate.device_serial)
    return f"wipe-{when:%Y%m%d-%H%M%S}-{serial or 'UNKNOWN_SERIAL'}.json"


def save_certificate(certificate: Certificate, directory: Optional[Union[str, Path]] = None,
                     private_key_pem: Optional[str] = None,
                     when: Optional[datetime] = None) -> Path:
    """Write the exact document bytes (plus a detached .sig if a key is given)"""
    directory = Path(config.CERT_DIR if directory is None else directory)
    directory.mkdir(parents=True, exist_ok=True)

    path = directory / certificate_filename(certificate, when)
    path.write_bytes(certificate.document)

    if private_key_pem:
        signature = sign_document(certificate.document, private_key_pem)
        path.with_name(path.name + ".sig").write_text(signature + "\n", encoding="ascii")

    logger.info(f"Certificate saved to {path}")
    return path


def load_certificate_document(path: Union[str, Path]) -> bytes:
    """Raw document bytes, untouched"""
    with open(os.fspath(path), "rb") as f:
        return f.read()


# --- Detached signatures ---

def sign_document(document: bytes, private_key_pem: str) -> str:
    """Base64 RSA PKCS#1 v1.5 signature over SHA-256 of the document"""
    key = RSA.import_key(private_key_pem)
    signature = pkcs1_15.new(key).sign(SHA256.new(document))
    return base64.b64encode(signature).decode("ascii")


def verify_document_signature(document: bytes, signature_b64: str, public_key_pem: str) -> bool:
    key = RSA.import_key(public_key_pem)
    try:
        signature = base64.b64decode(signature_b64.strip(), validate=True)
        pkcs1_15.new(key).verify(SHA256.new(document), signature)
        return True
    except (ValueError, TypeError):
        return False
