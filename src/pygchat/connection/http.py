from __future__ import annotations

import asyncio
import contextlib
import logging
import urllib.error
import urllib.request
from typing import Any, Protocol, cast

from google.protobuf.message import DecodeError as ProtobufDecodeError

from ..config import SessionConfig
from ..constants import DEFAULT_ORIGIN
from ..exceptions import TransportError
from ..proto import response_type_for

logger = logging.getLogger(__name__)

_USER_AGENT = "pygchat/0.1"


class RpcTransport(Protocol):
    """
    The only network capability the core needs.

    `invoke` sends `request` (a protobuf message) to the RPC named `method` and
    returns the decoded response, or raises `TransportError`. Retries and
    timeouts are the transport's business.
    """

    async def invoke(self, method: str, request: Any) -> Any: ...


class AvatarFetcher(Protocol):
    async def fetch(self, url: str) -> bytes: ...


def _http_request(
    url: str,
    *,
    data: bytes | None,
    headers: dict[str, str],
    timeout_s: float,
    method: str,
) -> bytes:
    req = urllib.request.Request(url, data=data, headers=headers, method=method)
    try:
        with urllib.request.urlopen(req, timeout=timeout_s) as resp:
            return cast(bytes, resp.read())
    except urllib.error.HTTPError as e:
        body = b""
        with contextlib.suppress(Exception):
            body = e.read()
        raise TransportError(f"http error {e.code} for {url}: {body[:200]!r}") from e
    except Exception as e:
        raise TransportError(f"request to {url} failed: {e}") from e


class HttpRpcTransport:
    """
    Protobuf-over-HTTPS RPC transport.

    Each call POSTs the serialized request to `{api_url}/{method}?alt=proto`.
    The blocking urllib call runs in a worker thread so the event loop keeps
    processing events while a request is in flight.
    """

    def __init__(self, config: SessionConfig, *, auth_token: str | None = None) -> None:
        self.config = config
        self.auth_token = auth_token

    def _headers(self) -> dict[str, str]:
        headers = {
            "Origin": DEFAULT_ORIGIN,
            "User-Agent": _USER_AGENT,
            "Content-Type": "application/x-protobuf",
        }
        if self.auth_token:
            headers["Authorization"] = f"Bearer {self.auth_token}"
        headers.update(self.config.headers)
        return headers

    async def invoke(self, method: str, request: Any) -> Any:
        response_type = response_type_for(method)
        url = f"{self.config.api_url.rstrip('/')}/{method}?alt=proto"
        body = await asyncio.to_thread(
            _http_request,
            url,
            data=request.SerializeToString(),
            headers=self._headers(),
            timeout_s=self.config.rpc_timeout_s,
            method="POST",
        )
        response = response_type()
        try:
            response.ParseFromString(body)
        except ProtobufDecodeError as e:
            raise TransportError(f"{method}: undecodable response ({len(body)} bytes)") from e
        return response


class HttpAvatarFetcher:
    def __init__(self, *, timeout_s: float = 30.0) -> None:
        self.timeout_s = timeout_s

    async def fetch(self, url: str) -> bytes:
        return await asyncio.to_thread(
            _http_request,
            url,
            data=None,
            headers={"User-Agent": _USER_AGENT},
            timeout_s=self.timeout_s,
            method="GET",
        )
