# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_relay

from typing import Optional


class RelayError(Exception):
    """Base exception for all Relay errors."""

    pass


class ProxyConfigurationError(RelayError):
    """Raised when proxy options fail validation."""

    pass


class ProxyError(RelayError):
    """
    Base exception for failures inside the proxy pipeline.

    The pipeline stage the failure happened in is recorded on ``stage`` and the
    underlying exception, if any, is chained as ``__cause__``.
    """

    def __init__(self, message: str, stage: Optional[str] = None):
        super().__init__(message)
        self.stage = stage


class FilterError(ProxyError):
    """Raised when a request or response filter predicate fails."""

    pass


class ResolutionError(ProxyError):
    """Raised when the target URL cannot be computed or decorated."""

    pass


class AssemblyError(ProxyError):
    """Raised when the outbound request headers or body cannot be built."""

    pass


class DispatchError(ProxyError):
    """Raised when the outbound request fails at the transport level."""

    pass


class ProxyTimeoutError(DispatchError):
    """Raised when the outbound request exceeds the configured timeout."""

    pass


class DecorationError(ProxyError):
    """Raised when a response header or body decorator fails."""

    pass


class DeliveryError(ProxyError):
    """Raised when the proxied response cannot be written to the host response."""

    pass
