# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_relay

import inspect
import json
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple, Union
from urllib.parse import parse_qsl, urlencode

import httpx
from starlette.requests import Request

from coreason_relay.options import ProxyOptions

# Headers that only make sense on a single hop and are never forwarded
HOP_BY_HOP_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailer",
    "transfer-encoding",
    "upgrade",
}

# Recomputed by the transport or by the host response
LENGTH_HEADERS = {"content-length"}

# httpx decodes compressed upstream bodies, so the encoding header no longer applies
RESPONSE_ONLY_HEADERS = {"content-encoding"}

BODY_METHODS = {"POST", "PUT", "PATCH", "DELETE"}

JSON_MEDIA_TYPE = "application/json"
FORM_MEDIA_TYPE = "application/x-www-form-urlencoded"


async def maybe_await(value: Any) -> Any:
    """Await ``value`` if a hook returned an awaitable, otherwise return it as-is."""
    if inspect.isawaitable(value):
        return await value
    return value


def media_type(content_type: Optional[str]) -> str:
    if not content_type:
        return ""
    return content_type.split(";", 1)[0].strip().lower()


def charset(content_type: Optional[str], default: str = "utf-8") -> str:
    if not content_type:
        return default
    for param in content_type.split(";")[1:]:
        name, _, value = param.partition("=")
        if name.strip().lower() == "charset" and value.strip():
            return value.strip().strip('"')
    return default


def is_json(mime: str) -> bool:
    return mime == JSON_MEDIA_TYPE or mime.endswith("+json")


# --- Target URL ---


def parse_target(value: Union[str, httpx.URL]) -> httpx.URL:
    """Parse a proxy target, defaulting to http when the scheme is missing."""
    if isinstance(value, httpx.URL):
        return value
    text = str(value).strip()
    if not text:
        raise ValueError("Proxy target URL is empty")
    if "://" not in text:
        text = f"http://{text}"
    url = httpx.URL(text)
    if not url.host:
        raise ValueError(f"Proxy target '{value}' has no host")
    return url


def join_url(base: httpx.URL, route_path: str, query: bytes) -> httpx.URL:
    """
    Append the inbound route path to the base target path.
    The inbound query string replaces the base query when present.
    """
    base_path = base.path.rstrip("/")
    if route_path in ("", "/"):
        path = base.path or "/"
    else:
        path = base_path + route_path

    changes: Dict[str, Any] = {"path": path}
    if query:
        changes["query"] = query
    return base.copy_with(**changes)


# --- Outbound request ---


def _merge_values(name: str, values: Iterable[str]) -> str:
    separator = "; " if name == "cookie" else ", "
    return separator.join(values)


def forwarded_headers(
    headers: Iterable[Tuple[str, str]],
    preserve_host: bool = False,
    extra: Optional[Mapping[str, str]] = None,
) -> Dict[str, str]:
    """
    Build the outbound header set from the inbound header pairs.

    Hop-by-hop headers and content-length are dropped. The Host header is dropped
    too unless ``preserve_host`` is set, so the transport fills in the target host.
    """
    grouped: Dict[str, list] = {}
    for key, value in headers:
        name = key.lower()
        if name in HOP_BY_HOP_HEADERS or name in LENGTH_HEADERS:
            continue
        if name == "host" and not preserve_host:
            continue
        grouped.setdefault(name, []).append(value)

    result = {name: _merge_values(name, values) for name, values in grouped.items()}
    for key, value in (extra or {}).items():
        result[key.lower()] = value
    return result


def _reserialize_json(text: str) -> str:
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as e:
        raise ValueError(f"Request body declared as JSON could not be parsed: {e}") from e
    return json.dumps(parsed, ensure_ascii=False)


def _reserialize_form(text: str) -> str:
    try:
        pairs = parse_qsl(text, keep_blank_values=True, strict_parsing=False, errors="strict")
    except (ValueError, UnicodeDecodeError) as e:
        raise ValueError(f"Request body declared as form data could not be parsed: {e}") from e
    return urlencode(pairs)


async def read_request_body(request: Request, options: ProxyOptions) -> Optional[Union[bytes, str]]:
    """
    Produce the outbound body for an inbound request.

    Returns None when the body must not be forwarded: ``parse_request_body`` is off
    or the inbound method does not carry a body. Only JSON and form bodies are decoded
    and re-serialized; any other body is forwarded as the raw inbound bytes.

    Raises:
        ValueError: If a declared JSON or form body is not valid UTF-8 or cannot be parsed.
    """
    if not options.parse_request_body or request.method.upper() not in BODY_METHODS:
        return None

    raw = await request.body()
    if options.request_body_encoding is None:
        return raw

    mime = media_type(request.headers.get("content-type"))
    declared_json = is_json(mime)
    if not declared_json and mime != FORM_MEDIA_TYPE:
        return raw

    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise ValueError(f"Request body declared as {mime} is not valid UTF-8: {e}") from e

    if text.strip():
        if declared_json:
            text = _reserialize_json(text)
        else:
            text = _reserialize_form(text)

    if options.request_as_buffer:
        return text.encode("utf-8")
    return text


# --- Inbound response ---


def decode_response_body(response: httpx.Response) -> Any:
    """
    Decode a buffered upstream body by its declared content type.
    JSON becomes Python objects (falling back to text when malformed), text/* becomes str,
    anything else stays bytes.
    """
    mime = media_type(response.headers.get("content-type"))
    if is_json(mime):
        try:
            return response.json()
        except ValueError:
            return response.text
    if mime.startswith("text/"):
        return response.text
    return response.content


def response_headers(response: httpx.Response) -> httpx.Headers:
    """Copy upstream headers that still apply once the body has been buffered."""
    dropped = HOP_BY_HOP_HEADERS | LENGTH_HEADERS | RESPONSE_ONLY_HEADERS
    return httpx.Headers([(k, v) for k, v in response.headers.multi_items() if k.lower() not in dropped])


def encode_response_body(data: Any, content_type: Optional[str] = None) -> bytes:
    if data is None:
        return b""
    if isinstance(data, (bytes, bytearray, memoryview)):
        return bytes(data)
    if isinstance(data, str):
        return data.encode(charset(content_type))
    return json.dumps(data, ensure_ascii=False).encode("utf-8")
