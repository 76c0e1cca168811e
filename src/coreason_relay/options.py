# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_relay

from typing import Any, Awaitable, Callable, Dict, Literal, Mapping, Optional, Union

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from starlette.responses import Response

from coreason_relay.exceptions import ProxyConfigurationError

MaybeAwaitable = Union[Any, Awaitable[Any]]

FilterRequest = Callable[..., MaybeAwaitable]
FilterResponse = Callable[..., MaybeAwaitable]
ErrorHandler = Callable[..., MaybeAwaitable]
Decorator = Callable[..., MaybeAwaitable]


class MemoizedUrl:
    """
    Cell holding the target URL resolved by the first proxied request.

    The cell is shared by every request that runs through the same ProxyOptions
    instance and is read and written without a lock. Resolving the target must be
    deterministic for a given configuration: two concurrent first requests may
    both compute and store the URL, and either write is acceptable.
    """

    __slots__ = ("value",)

    def __init__(self, value: Optional[httpx.URL] = None) -> None:
        self.value = value

    def __repr__(self) -> str:
        return f"MemoizedUrl({str(self.value) if self.value is not None else None!r})"


def never_filter(*args: Any) -> bool:
    """Default filter predicate: never skip the proxy."""
    return False


def reraise_error(error: BaseException, response: Response, call_next: Any) -> None:
    """Default error handler: hand the error back to the host's own error handling."""
    raise error


class ProxyOptions(BaseModel):  # type: ignore[misc]
    """
    Canonical, fully defaulted proxy configuration.

    Instances are immutable apart from the ``memoized_url`` cell.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", arbitrary_types_allowed=True)

    filter_request: FilterRequest = Field(
        default=never_filter, description="Return True to skip the proxy for this request"
    )
    filter_response: FilterResponse = Field(
        default=never_filter, description="Return True to discard the proxied response"
    )
    error_handler: ErrorHandler = Field(
        default=reraise_error, description="Called as (error, response, call_next) on pipeline failure"
    )

    request_url_decorator: Optional[Decorator] = None
    request_init_decorator: Optional[Decorator] = None
    response_header_decorator: Optional[Decorator] = None
    response_body_decorator: Optional[Decorator] = None

    preserve_host_header: bool = False
    parse_request_body: bool = True
    request_body_encoding: Optional[Literal["utf-8"]] = "utf-8"
    request_as_buffer: bool = False

    memoize_url: bool = True
    memoized_url: MemoizedUrl = Field(default_factory=MemoizedUrl)

    secure: Optional[bool] = None
    timeout_ms: Optional[float] = Field(default=None, gt=0)
    method: Optional[str] = None

    # Transport shaping
    headers: Optional[Dict[str, str]] = None
    follow_redirects: bool = False

    @field_validator("memoized_url", mode="before")
    @classmethod
    def coerce_memoized_url(cls, v: Any) -> Any:
        if v is None:
            return MemoizedUrl()
        if isinstance(v, (str, httpx.URL)):
            return MemoizedUrl(httpx.URL(v))
        return v

    @field_validator("request_body_encoding", mode="before")
    @classmethod
    def normalize_encoding(cls, v: Any) -> Any:
        if isinstance(v, str) and v.lower() in ("utf-8", "utf8"):
            return "utf-8"
        return v

    @field_validator("method")
    @classmethod
    def normalize_method(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        if not v.strip():
            raise ValueError("method must not be blank")
        return v.strip().upper()

    @property
    def timeout_seconds(self) -> Optional[float]:
        return self.timeout_ms / 1000.0 if self.timeout_ms is not None else None


def resolve_options(
    options: Union[ProxyOptions, Mapping[str, Any], None] = None, **overrides: Any
) -> ProxyOptions:
    """
    Normalize user-supplied options into a ProxyOptions record.

    Args:
        options: None, a mapping of option names to values, or an already resolved ProxyOptions.
        **overrides: Option values applied on top of ``options``.

    Returns:
        ProxyOptions: The resolved configuration. Resolving an existing ProxyOptions without
        overrides returns it unchanged, so its memoized URL cell stays shared.

    Raises:
        ProxyConfigurationError: If an option name is unknown or a value is invalid.
    """
    if isinstance(options, ProxyOptions):
        if not overrides:
            return options
        values = {name: getattr(options, name) for name in ProxyOptions.model_fields}
        # A changed configuration must not inherit another configuration's URL.
        values.pop("memoized_url")
    else:
        values = dict(options or {})
    values.update(overrides)

    try:
        return ProxyOptions(**values)
    except ValidationError as e:
        raise ProxyConfigurationError(f"Invalid proxy options: {e}") from e
