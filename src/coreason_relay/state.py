# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_relay

from typing import Any, Awaitable, Callable, Optional, Union

import httpx
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import Scope

from coreason_relay.models import PipelineStage, ProxyRequestInit
from coreason_relay.options import ProxyOptions

CallNext = Callable[[Request], Awaitable[Response]]
Target = Union[str, httpx.URL, Callable[[Request], Any]]


def app_path(scope: Scope) -> str:
    """Request path relative to the application root path."""
    path: str = scope.get("path", "/")
    root_path: str = scope.get("root_path", "")
    if root_path and path.startswith(root_path):
        path = path[len(root_path) :]
    return path or "/"


class ProxyState:
    """
    Per-request context threaded through every pipeline step.

    The inbound request, the host response handle and ``call_next`` are borrowed
    from the host for the duration of one request. Everything else is filled in
    step by step and discarded once the pipeline terminates.
    """

    def __init__(
        self,
        request: Request,
        response: Response,
        call_next: CallNext,
        target: Target,
        options: ProxyOptions,
        client: Optional[httpx.AsyncClient] = None,
        mount_path: str = "",
    ):
        self.request = request
        self.response = response
        self.call_next = call_next
        self.target = target
        self.options = options
        self.client = client
        self.mount_path = mount_path

        self.stage: PipelineStage = PipelineStage.START

        # Outbound side
        self.url: Optional[httpx.URL] = None
        self.request_init: Optional[ProxyRequestInit] = None
        self.proxy_request: Optional[httpx.Request] = None
        self.proxy_response: Optional[httpx.Response] = None
        self.proxy_response_data: Any = None

        # What gets written back to the caller
        self.response_headers: Optional[httpx.Headers] = None
        self.response_body: Any = None

    @property
    def route_path(self) -> str:
        """Inbound path below the host root path and the proxy mount path."""
        path = app_path(self.request.scope)
        mount = self.mount_path.rstrip("/")
        if mount and (path == mount or path.startswith(mount + "/")):
            path = path[len(mount) :]

        return path or "/"

    @property
    def query_string(self) -> bytes:
        return bytes(self.request.scope.get("query_string", b""))
