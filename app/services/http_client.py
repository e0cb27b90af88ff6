from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Tuple

import httpx
import orjson

from ..errors import TransportError
from ..resolver import ResolvedRequest

JSON_CONTENT_TYPE = "application/json"


@dataclass(frozen=True)
class PreparedRequest:
    method: str
    url: str
    headers: Tuple[Tuple[str, str], ...]
    content: Optional[bytes] = None

    @classmethod
    def from_resolved(cls, request: ResolvedRequest) -> "PreparedRequest":
        headers = request.headers
        content = None
        if request.has_body:
            content = encode_body(request.body)
            if not any(name.lower() == "content-type" for name, _ in headers):
                headers = headers + (("Content-Type", JSON_CONTENT_TYPE),)
        return cls(method=request.method, url=request.url, headers=headers, content=content)


@dataclass(frozen=True)
class HttpResponse:
    status_code: int
    body: bytes = b""


def encode_body(value: Any) -> bytes:
    # orjson keeps dict insertion order, so declared property order survives
    try:
        return orjson.dumps(value)
    except orjson.JSONEncodeError as exc:
        raise TransportError(f"cannot encode request body: {exc}") from exc


class HttpDispatcher:
    def __init__(self, client: httpx.Client | None = None):
        self._client = client
        self._owns_client = client is None

    def send(self, request: PreparedRequest, timeout: float) -> HttpResponse:
        client = self._get_client()
        try:
            r = client.request(
                request.method,
                request.url,
                headers=list(request.headers),
                content=request.content,
                timeout=timeout,
            )
            # the body is always drained so the connection goes back to the pool
            body = r.read()
        except httpx.TimeoutException as exc:
            raise TransportError(f"timed out after {timeout}s: {exc}") from exc
        except (httpx.TransportError, httpx.InvalidURL) as exc:
            raise TransportError(f"{type(exc).__name__}: {exc}") from exc
        except UnicodeEncodeError as exc:
            # header values must be ascii on the wire
            raise TransportError(f"cannot encode request: {exc}") from exc
        return HttpResponse(status_code=r.status_code, body=body)

    def close(self) -> None:
        if self._client is not None and self._owns_client:
            self._client.close()
            self._client = None

    def _get_client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client()
        return self._client

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False
