"""
Chain-of-Custody Client
Submits hash-bound erasure proofs to the recording service and asks it to
confirm stored certificates. One attempt per call; failures are surfaced, not retried.

Wire protocol (JSON over HTTP):
    POST /record-wipe  {"cert_hash", "device_hash", "wipe_method"} -> {"status": "ok"}
    POST /verify-wipe  {"device_hash", "cert_hash"}
        -> {"status": "ok", "verified": bool, "timestamp": int, "wipe_method": int}
        |  {"status": "<error>", "message": "..."}
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

import requests

from ztwipe import config
from ztwipe.certificate import Certificate, chain_request_for_document, load_certificate_document
from ztwipe.errors import (
    MalformedCertificateError,
    ProtocolError,
    ServiceError,
    TransportError,
    VerificationMismatch,
)
from ztwipe.models import ChainRequest, VerificationFailure, VerificationResult, WipeMethod

logger = logging.getLogger(__name__)


class ChainOfCustodyClient:
    """Client for the local chain-of-custody recording service"""

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None,
                 session: Optional[requests.Session] = None):
        self.base_url = (base_url or config.CHAIN_SERVICE_URL).rstrip('/')
        self.timeout = config.CHAIN_TIMEOUT if timeout is None else timeout

        self.session = session or requests.Session()
        self.session.headers.update({
            'Content-Type': 'application/json',
            'User-Agent': f'{config.APP_NAME}/{config.TOOL_VERSION.split()[-1]}'
        })

    def close(self):
        self.session.close()

    def __enter__(self) -> "ChainOfCustodyClient":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def _post(self, endpoint: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """POST JSON and return the decoded object body, checking status == "ok" """
        url = f"{self.base_url}{endpoint}"
        try:
            response = self.session.post(url, json=payload, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise TransportError(f"Request to {url} failed: {e}") from e

        try:
            body = response.json()
        except ValueError:
            raise ProtocolError(
                f"{url} returned HTTP {response.status_code} with a non-JSON body: "
                f"{response.text[:200]!r}") from None

        if not isinstance(body, dict):
            raise ProtocolError(f"{url} returned a JSON {type(body).__name__}, expected an object")

        status = body.get("status")
        if not isinstance(status, str):
            raise ProtocolError(f"{url} response has no string 'status' field")
        if status != "ok":
            message = body.get("message")
            raise ServiceError(status, message if isinstance(message, str) else "")
        return body

    # --- Record ---

    def record(self, certificate: Certificate) -> None:
        """Send the proof of a successful wipe; returns only on durable acceptance"""
        if not certificate.wipe_status:
            raise ValueError("Refusing to record proof for a failed erasure")
        self.record_request(certificate.chain_request())

    def record_request(self, request: ChainRequest) -> None:
        logger.info(f"Recording wipe proof cert_hash={request.cert_hash}")
        self._post(config.RECORD_ENDPOINT, request.record_payload())
        logger.info(f"Wipe proof recorded for device_hash={request.device_hash}")

    # --- Verify ---

    def query(self, request: ChainRequest) -> VerificationResult:
        """Ask the service about a hash pair; raises on every non-verified outcome"""
        body = self._post(config.VERIFY_ENDPOINT, request.verify_payload())

        verified = body.get("verified")
        if not isinstance(verified, bool):
            raise ProtocolError("Verification response has no boolean 'verified' field")
        if not verified:
            raise VerificationMismatch(
                f"Service has no record of cert_hash={request.cert_hash} "
                f"for device_hash={request.device_hash}")

        timestamp = body.get("timestamp")
        method = body.get("wipe_method")
        if not _is_uint(timestamp) or not _is_uint(method):
            raise ProtocolError("Verification response lacks integer 'timestamp'/'wipe_method'")
        try:
            wipe_method = WipeMethod(method)
        except ValueError:
            raise ProtocolError(f"Verification response has unknown wipe_method {method}") from None

        return VerificationResult(verified=True, timestamp=timestamp, wipe_method=wipe_method)

    def verify(self, document: bytes) -> VerificationResult:
        """Verify an untrusted certificate document against the service

        Never raises for a verification failure; the cause is in
        VerificationResult.failure.
        """
        try:
            request = chain_request_for_document(document)
        except MalformedCertificateError as e:
            logger.error(f"Certificate document rejected: {e}")
            return VerificationResult.failed(VerificationFailure.MALFORMED_DOCUMENT, str(e))

        try:
            result = self.query(request)
        except VerificationMismatch as e:
            logger.warning(str(e))
            return VerificationResult.failed(VerificationFailure.NOT_VERIFIED, str(e))
        except TransportError as e:
            logger.error(f"Verification service unreachable: {e}")
            return VerificationResult.failed(VerificationFailure.TRANSPORT, str(e))
        except ServiceError as e:
            logger.error(f"Verification service error: {e}")
            return VerificationResult.failed(VerificationFailure.SERVICE_ERROR, str(e))
        except ProtocolError as e:
            logger.error(f"Unexpected verification response: {e}")
            return VerificationResult.failed(VerificationFailure.PROTOCOL, str(e))

        logger.info(f"Certificate verified, recorded at {result.timestamp}")
        return result

    def verify_certificate(self, certificate: Certificate) -> VerificationResult:
        return self.verify(certificate.document)

    def verify_file(self, path: Union[str, Path]) -> VerificationResult:
        try:
            document = load_certificate_document(path)
        except OSError as e:
            return VerificationResult.failed(VerificationFailure.MALFORMED_DOCUMENT,
                                             f"Cannot read certificate {path}: {e}")
        return self.verify(document)


def _is_uint(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0
