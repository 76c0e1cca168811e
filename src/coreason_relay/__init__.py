# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_relay

"""
HTTP reverse-proxy pipeline for Starlette and FastAPI applications.
"""

__version__ = "0.1.0"

from coreason_relay.exceptions import (
    AssemblyError,
    DecorationError,
    DeliveryError,
    DispatchError,
    FilterError,
    ProxyConfigurationError,
    ProxyError,
    ProxyTimeoutError,
    RelayError,
    ResolutionError,
)
from coreason_relay.models import PipelineStage, ProxyRequestInit
from coreason_relay.options import MemoizedUrl, ProxyOptions, resolve_options
from coreason_relay.proxy import ProxyHandler, ProxyMiddleware, proxy

__all__ = [
    "AssemblyError",
    "DecorationError",
    "DeliveryError",
    "DispatchError",
    "FilterError",
    "MemoizedUrl",
    "PipelineStage",
    "ProxyConfigurationError",
    "ProxyError",
    "ProxyHandler",
    "ProxyMiddleware",
    "ProxyOptions",
    "ProxyRequestInit",
    "ProxyTimeoutError",
    "RelayError",
    "ResolutionError",
    "proxy",
    "resolve_options",
]
