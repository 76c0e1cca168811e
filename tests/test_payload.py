# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_relay

import httpx
import pytest

from coreason_relay.options import resolve_options
from coreason_relay.payload import (
    charset,
    decode_response_body,
    encode_response_body,
    forwarded_headers,
    join_url,
    maybe_await,
    media_type,
    parse_target,
    read_request_body,
    response_headers,
)
from tests.relay_test_utils import make_request


def test_parse_target_defaults_to_http() -> None:
    assert parse_target("target.local:8080/api") == httpx.URL("http://target.local:8080/api")
    assert parse_target("https://target.local").scheme == "https"

    url = httpx.URL("http://already.parsed")
    assert parse_target(url) is url


@pytest.mark.parametrize("bad", ["", "   "])  # type: ignore[misc]
def test_parse_target_rejects_missing_host(bad: str) -> None:
    with pytest.raises(ValueError):
        parse_target(bad)


@pytest.mark.parametrize(  # type: ignore[misc]
    "base, route_path, query, expected",
    [
        ("http://t.local", "/", b"", "http://t.local/"),
        ("http://t.local", "/users/1", b"", "http://t.local/users/1"),
        ("http://t.local/api", "/", b"", "http://t.local/api"),
        ("http://t.local/api/", "/users", b"a=1", "http://t.local/api/users?a=1"),
        ("http://t.local/api?key=x", "/users", b"", "http://t.local/api/users?key=x"),
        ("http://t.local/api?key=x", "/users", b"name=Deno", "http://t.local/api/users?name=Deno"),
    ],
)
def test_join_url(base: str, route_path: str, query: bytes, expected: str) -> None:
    assert join_url(httpx.URL(base), route_path, query) == httpx.URL(expected)


def test_forwarded_headers_drops_host_and_hop_by_hop() -> None:
    headers = forwarded_headers(
        [
            ("Host", "proxy.local"),
            ("Connection", "keep-alive"),
            ("Content-Length", "12"),
            ("Transfer-Encoding", "chunked"),
            ("X-Custom", "val"),
            ("Accept", "text/html"),
            ("Accept", "application/json"),
            ("Cookie", "a=1"),
            ("Cookie", "b=2"),
        ]
    )

    assert headers == {
        "x-custom": "val",
        "accept": "text/html, application/json",
        "cookie": "a=1; b=2",
    }


def test_forwarded_headers_preserves_host_and_merges_extra() -> None:
    headers = forwarded_headers(
        [("host", "proxy.local"), ("x-custom", "inbound")],
        preserve_host=True,
        extra={"X-Custom": "configured", "X-Extra": "1"},
    )

    assert headers == {"host": "proxy.local", "x-custom": "configured", "x-extra": "1"}


def test_media_type_and_charset() -> None:
    assert media_type("Application/JSON; charset=utf-8") == "application/json"
    assert media_type(None) == ""
    assert charset('text/plain; charset="latin-1"') == "latin-1"
    assert charset("text/plain") == "utf-8"
    assert charset(None, default="ascii") == "ascii"


@pytest.mark.asyncio  # type: ignore[misc]
async def test_maybe_await() -> None:
    async def produce() -> int:
        return 2

    assert await maybe_await(1) == 1
    assert await maybe_await(produce()) == 2


@pytest.mark.asyncio  # type: ignore[misc]
async def test_json_body_is_reserialized() -> None:
    request = make_request(
        "POST", body=b'{ "name" :  "Deno" }', headers={"content-type": "application/json; charset=utf-8"}
    )
    assert await read_request_body(request, resolve_options()) == '{"name": "Deno"}'


@pytest.mark.asyncio  # type: ignore[misc]
async def test_vendor_json_body_is_reserialized() -> None:
    request = make_request("PUT", body=b'{"a":[1,2]}', headers={"content-type": "application/vnd.api+json"})
    assert await read_request_body(request, resolve_options()) == '{"a": [1, 2]}'


@pytest.mark.asyncio  # type: ignore[misc]
async def test_form_body_is_reserialized() -> None:
    request = make_request(
        "POST", body=b"name=Deno&empty=&tag=a+b", headers={"content-type": "application/x-www-form-urlencoded"}
    )
    assert await read_request_body(request, resolve_options()) == "name=Deno&empty=&tag=a+b"


@pytest.mark.asyncio  # type: ignore[misc]
async def test_empty_declared_json_body_passes_through() -> None:
    request = make_request("POST", body=b"", headers={"content-type": "application/json"})
    assert await read_request_body(request, resolve_options()) == ""


@pytest.mark.asyncio  # type: ignore[misc]
async def test_malformed_json_body_raises() -> None:
    request = make_request("POST", body=b"{not json", headers={"content-type": "application/json"})
    with pytest.raises(ValueError, match="JSON"):
        await read_request_body(request, resolve_options())


@pytest.mark.asyncio  # type: ignore[misc]
async def test_invalid_utf8_declared_json_body_raises() -> None:
    request = make_request("POST", body=b"\xff\xfe", headers={"content-type": "application/json"})
    with pytest.raises(ValueError, match="UTF-8"):
        await read_request_body(request, resolve_options())


@pytest.mark.asyncio  # type: ignore[misc]
@pytest.mark.parametrize(  # type: ignore[misc]
    "content_type",
    ["application/octet-stream", "text/plain", "multipart/form-data; boundary=x", ""],
)
async def test_other_bodies_forwarded_as_raw_bytes(content_type: str) -> None:
    headers = {"content-type": content_type} if content_type else {}
    request = make_request("POST", body=b"\x89PNG\r\n\x1a\n\xff\xfe", headers=headers)
    body = await read_request_body(request, resolve_options())
    assert body == b"\x89PNG\r\n\x1a\n\xff\xfe"


@pytest.mark.asyncio  # type: ignore[misc]
async def test_raw_encoding_passes_bytes_through() -> None:
    request = make_request("POST", body=b"\xff\xfe{not json", headers={"content-type": "application/json"})
    body = await read_request_body(request, resolve_options(request_body_encoding=None))
    assert body == b"\xff\xfe{not json"


@pytest.mark.asyncio  # type: ignore[misc]
async def test_request_as_buffer_returns_bytes() -> None:
    request = make_request("POST", body=b'{"name":"Deno"}', headers={"content-type": "application/json"})
    body = await read_request_body(request, resolve_options(request_as_buffer=True))
    assert body == b'{"name": "Deno"}'


@pytest.mark.asyncio  # type: ignore[misc]
async def test_body_omitted_for_bodiless_methods_and_when_disabled() -> None:
    get_request = make_request("GET", body=b'{"a":1}', headers={"content-type": "application/json"})
    assert await read_request_body(get_request, resolve_options()) is None

    post_request = make_request("POST", body=b'{"a":1}', headers={"content-type": "application/json"})
    assert await read_request_body(post_request, resolve_options(parse_request_body=False)) is None


def test_decode_response_body_by_content_type() -> None:
    assert decode_response_body(httpx.Response(200, json={"a": 1})) == {"a": 1}
    assert decode_response_body(httpx.Response(200, text="hi")) == "hi"
    assert decode_response_body(httpx.Response(200, content=b"\x00\x01")) == b"\x00\x01"

    malformed = httpx.Response(200, content=b"{oops", headers={"content-type": "application/json"})
    assert decode_response_body(malformed) == "{oops"


def test_response_headers_drop_length_and_encoding() -> None:
    upstream = httpx.Response(
        200,
        headers=[
            ("content-type", "text/plain"),
            ("content-length", "3"),
            ("content-encoding", "gzip"),
            ("connection", "close"),
            ("set-cookie", "a=1"),
            ("set-cookie", "b=2"),
        ],
    )

    headers = response_headers(upstream)

    assert headers.get_list("set-cookie") == ["a=1", "b=2"]
    assert "content-length" not in headers
    assert "content-encoding" not in headers
    assert "connection" not in headers
    assert headers["content-type"] == "text/plain"


def test_encode_response_body() -> None:
    assert encode_response_body(None) == b""
    assert encode_response_body(b"raw") == b"raw"
    assert encode_response_body(bytearray(b"raw")) == b"raw"
    assert encode_response_body("é", "text/plain; charset=latin-1") == "é".encode("latin-1")
    assert encode_response_body({"name": "Deno"}) == b'{"name": "Deno"}'
