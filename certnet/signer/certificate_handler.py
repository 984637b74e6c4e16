"""
Remote certificate client.

The signer talks to the aggregator through a `CertificateHandler`: retrieve
the pending certificate, register single signatures, register the signer's
identity. The runtime only depends on the protocol; `HttpCertificateHandler`
is the REST implementation.

Errors distinguish *technical* failures (transport, 5xx) from *logical*
ones (the aggregator rejected the request). Neither is retried here.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import http.client
import json
import urllib.error
import urllib.request
from typing import Any, List, Optional, Protocol, Sequence

from certnet.entities import CertificatePending, Signer, SingleSignature
from certnet.observability import Layer, get_logger

logger = get_logger("http", Layer.CERTIFICATE_HANDLER)


class CertificateHandlerError(Exception):
    """Base error of the remote certificate client."""
    pass


class RemoteServerTechnicalError(CertificateHandlerError):
    """Transport or server-side failure."""
    pass


class RemoteServerLogicalError(CertificateHandlerError):
    """The aggregator rejected the request."""
    pass


class JsonParseError(CertificateHandlerError):
    """The aggregator answered with an undecodable payload."""
    pass


class CertificateHandler(Protocol):
    """Network boundary between a signer and the aggregator."""

    def retrieve_pending_certificate(self) -> Optional[CertificatePending]:
        """Return the next certificate to sign, or None if there is none."""
        ...

    def register_signatures(self, signatures: Sequence[SingleSignature]) -> None:
        ...

    def register_signer(self, signer: Signer) -> None:
        ...


class HttpCertificateHandler:
    """
    REST client of the aggregator.

    Endpoints (relative to `aggregator_endpoint`):
        GET  /certificate-pending   200 + JSON, or 204 when nothing is pending
        POST /register-signatures   list of single signatures
        POST /register-signer       signer identity
    """

    def __init__(self, aggregator_endpoint: str, timeout_seconds: float = 10.0):
        self.aggregator_endpoint = aggregator_endpoint.rstrip("/")
        self.timeout_seconds = timeout_seconds

    def _url(self, path: str) -> str:
        return f"{self.aggregator_endpoint}/{path.lstrip('/')}"

    def _request(self, method: str, path: str, payload: Any = None) -> tuple:
        """Perform a request and return (status, body bytes)."""
        url = self._url(path)
        data = None
        headers = {"Accept": "application/json"}
        if payload is not None:
            data = json.dumps(payload).encode("utf-8")
            headers["Content-Type"] = "application/json"

        request = urllib.request.Request(url, data=data, headers=headers, method=method)
        try:
            with urllib.request.urlopen(request, timeout=self.timeout_seconds) as resp:
                return resp.status, resp.read()
        except urllib.error.HTTPError as e:
            body = e.read().decode("utf-8", errors="replace") if e.fp else ""
            message = f"{method} {url} returned {e.code}: {body}".strip()
            if 400 <= e.code < 500:
                raise RemoteServerLogicalError(message) from e
            raise RemoteServerTechnicalError(message) from e
        except (urllib.error.URLError, http.client.HTTPException, OSError, ValueError) as e:
            raise RemoteServerTechnicalError(f"{method} {url} failed: {e}") from e

    def retrieve_pending_certificate(self) -> Optional[CertificatePending]:
        status, body = self._request("GET", "certificate-pending")
        if status == 204:
            return None
        if status != 200:
            raise RemoteServerTechnicalError(f"unexpected status {status} for certificate-pending")

        try:
            return CertificatePending.from_dict(json.loads(body.decode("utf-8")))
        except (ValueError, KeyError, TypeError) as e:
            raise JsonParseError(f"invalid pending certificate payload: {e}") from e

    def register_signatures(self, signatures: Sequence[SingleSignature]) -> None:
        payload: List[dict] = [s.to_dict() for s in signatures]
        status, _ = self._request("POST", "register-signatures", payload)
        logger.debug("Signatures registered", count=len(payload), status=status)

    def register_signer(self, signer: Signer) -> None:
        status, _ = self._request("POST", "register-signer", signer.to_dict())
        logger.debug("Signer registered", party_id=signer.party_id, status=status)
