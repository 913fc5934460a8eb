"""HTTP access to the relying party."""
from __future__ import annotations

import http.client
import json
import logging
import socket
import ssl
import urllib.error
import urllib.request
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Protocol

import certifi

from .errors import DecodeError, TransportError

__all__ = [
    "HttpResponse",
    "RelyingPartyTransport",
    "UrllibTransport",
]


LOGGER = logging.getLogger("passkey.transport")


@dataclass(frozen=True)
class HttpResponse:
    status: int
    body: bytes = b""
    headers: Mapping[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def header(self, name: str) -> Optional[str]:
        """Case-insensitive header lookup."""

        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return None

    def json(self) -> Any:
        try:
            return json.loads(self.text)
        except json.JSONDecodeError as exc:
            raise DecodeError(f"response body is not valid JSON: {exc}") from exc


class RelyingPartyTransport(Protocol):
    def post_json(
        self,
        path: str,
        payload: Any,
        headers: Optional[Mapping[str, str]] = None,
    ) -> HttpResponse:
        ...


def _build_ssl_context(verify_tls: bool) -> ssl.SSLContext:
    if not verify_tls:
        context = ssl.create_default_context()
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
        return context
    return ssl.create_default_context(cafile=certifi.where())


class UrllibTransport:
    """POST JSON documents to a relying party rooted at ``base_url``.

    Non-success statuses are returned as :class:`HttpResponse` objects so the
    caller can report the body; only connection level failures raise.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 30.0,
        verify_tls: bool = True,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.verify_tls = verify_tls
        self._ssl_context: Optional[ssl.SSLContext] = None

    def _context(self) -> Optional[ssl.SSLContext]:
        if not self.base_url.lower().startswith("https://"):
            return None
        if self._ssl_context is None:
            self._ssl_context = _build_ssl_context(self.verify_tls)
        return self._ssl_context

    def url_for(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def post_json(
        self,
        path: str,
        payload: Any,
        headers: Optional[Mapping[str, str]] = None,
    ) -> HttpResponse:
        url = self.url_for(path)
        request_headers: Dict[str, str] = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if headers:
            request_headers.update(headers)

        data = json.dumps(payload).encode("utf-8")
        request = urllib.request.Request(url, data=data, headers=request_headers, method="POST")
        LOGGER.debug("POST %s (%d bytes)", url, len(data))

        try:
            with urllib.request.urlopen(request, timeout=self.timeout, context=self._context()) as response:
                status = getattr(response, "status", None) or response.getcode()
                return HttpResponse(
                    status=status,
                    body=response.read(),
                    headers=dict(response.headers.items()),
                )
        except urllib.error.HTTPError as exc:
            body = exc.read() if exc.fp is not None else b""
            headers_out = dict(exc.headers.items()) if exc.headers is not None else {}
            LOGGER.debug("POST %s answered HTTP %s", url, exc.code)
            return HttpResponse(status=exc.code, body=body, headers=headers_out)
        except urllib.error.URLError as exc:
            reason = getattr(exc, "reason", exc)
            raise TransportError(f"relying party unreachable at {url}: {reason}") from exc
        except (socket.timeout, TimeoutError) as exc:
            raise TransportError(f"request to {url} timed out after {self.timeout}s") from exc
        except ConnectionError as exc:
            raise TransportError(f"connection to {url} failed: {exc}") from exc
        except (http.client.HTTPException, OSError) as exc:
            raise TransportError(f"request to {url} failed: {type(exc).__name__}: {exc}") from exc
