# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_relay

from enum import Enum
from typing import Dict, Optional, Union

from pydantic import BaseModel, Field


class PipelineStage(str, Enum):
    """Stages a proxied request moves through, in order, plus the two absorbing outcomes."""

    START = "start"
    FILTERING = "filtering"
    RESOLVING = "resolving"
    ASSEMBLING = "assembling"
    DISPATCHING = "dispatching"
    RESPONSE_FILTERING = "response_filtering"
    DECORATING = "decorating"
    DELIVERING = "delivering"
    DONE = "done"
    SHORT_CIRCUITED = "short_circuited"
    FAILED = "failed"


class ProxyRequestInit(BaseModel):
    """
    Pydantic model describing the outbound request handed to the transport.
    The target URL is resolved separately and lives on the ProxyState.
    """

    method: str = Field(..., description="HTTP method of the outbound request")
    headers: Dict[str, str] = Field(default_factory=dict, description="Headers sent to the target")
    body: Optional[Union[bytes, str]] = Field(None, description="Outbound body, omitted when None")
    follow_redirects: bool = Field(False, description="Whether the transport follows redirects")
