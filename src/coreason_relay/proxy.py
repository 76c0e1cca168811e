# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_relay

from typing import Any, Mapping, Optional, Union

import httpx
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from coreason_relay.options import ProxyOptions, resolve_options
from coreason_relay.pipeline import run_pipeline
from coreason_relay.state import CallNext, ProxyState, Target, app_path


class ProxyHandler:
    """
    Request handler that proxies inbound requests to a target.

    Invoke it as ``await handler(request, call_next)``. ``call_next`` receives
    control when a filter skips the proxy.
    """

    def __init__(
        self,
        target: Target,
        options: Union[ProxyOptions, Mapping[str, Any], None] = None,
        client: Optional[httpx.AsyncClient] = None,
        mount_path: str = "",
    ):
        """
        Args:
            target: Base URL of the target, or a callable computing it from the request.
            options: Proxy options, resolved once and shared by every request.
            client: Shared HTTPX client. When omitted the handler creates and owns one.
            mount_path: Path prefix stripped from inbound paths before forwarding.
        """
        self.target = target
        self.options = resolve_options(options)
        self.mount_path = mount_path
        self._client = client
        self._owns_client = client is None

    @property
    def client(self) -> httpx.AsyncClient:
        # Created on first use so the handler can be built outside an event loop.
        if self._client is None:
            self._client = httpx.AsyncClient()
        return self._client

    async def __call__(self, request: Request, call_next: CallNext, mount_path: Optional[str] = None) -> Response:
        state = ProxyState(
            request=request,
            response=Response(),
            call_next=call_next,
            target=self.target,
            options=self.options,
            client=self.client,
            mount_path=self.mount_path if mount_path is None else mount_path,
        )
        return await run_pipeline(state)

    async def aclose(self) -> None:
        """Close the HTTPX client if this handler created it."""
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None


def proxy(
    target: Target,
    options: Union[ProxyOptions, Mapping[str, Any], None] = None,
    *,
    client: Optional[httpx.AsyncClient] = None,
    mount_path: str = "",
    **option_overrides: Any,
) -> ProxyHandler:
    """
    Create a proxy handler for ``target``.

    Options may be passed as a mapping, a ProxyOptions instance, keyword arguments,
    or a mix; keyword arguments win.
    """
    resolved = resolve_options(options, **option_overrides)
    return ProxyHandler(target, resolved, client=client, mount_path=mount_path)


class ProxyMiddleware(BaseHTTPMiddleware):  # type: ignore[misc]
    """
    Starlette middleware that proxies every request under ``path`` through a handler.

    Requests outside ``path`` and requests skipped by a filter continue down the app.
    """

    def __init__(self, app: ASGIApp, handler: ProxyHandler, path: str = "/"):
        super().__init__(app)
        self.handler = handler
        self.path = "/" + path.strip("/") if path.strip("/") else "/"
        self.mount_path = handler.mount_path or (self.path if self.path != "/" else "")

    def matches(self, path: str) -> bool:
        if self.path == "/":
            return True
        return path == self.path or path.startswith(self.path + "/")

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if not self.matches(app_path(request.scope)):
            return await call_next(request)
        return await self.handler(request, call_next, mount_path=self.mount_path)
