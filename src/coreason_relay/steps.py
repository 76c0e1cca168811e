# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_relay

import asyncio

import httpx
from loguru import logger

from coreason_relay.exceptions import (
    AssemblyError,
    DecorationError,
    DeliveryError,
    DispatchError,
    FilterError,
    ProxyTimeoutError,
    ResolutionError,
)
from coreason_relay.logging_utils import scrub_sensitive_data
from coreason_relay.models import ProxyRequestInit
from coreason_relay.outcomes import Continue, ShortCircuit, StepOutcome, pipeline_step
from coreason_relay.payload import (
    JSON_MEDIA_TYPE,
    decode_response_body,
    encode_response_body,
    forwarded_headers,
    is_json,
    join_url,
    maybe_await,
    media_type,
    parse_target,
    read_request_body,
    response_headers,
)
from coreason_relay.state import ProxyState


@pipeline_step(FilterError)
async def filter_request(state: ProxyState) -> StepOutcome:
    """Skip the proxy when ``filter_request(request, response)`` is truthy."""
    skip = await maybe_await(state.options.filter_request(state.request, state.response))
    if skip:
        return ShortCircuit()
    return Continue(state)


async def _compute_base_url(state: ProxyState) -> httpx.URL:
    target = state.target
    if callable(target):
        target = await maybe_await(target(state.request))
    url = parse_target(target)

    decorator = state.options.request_url_decorator
    if decorator is not None:
        url = parse_target(await maybe_await(decorator(url, state.request)))
    return url


@pipeline_step(ResolutionError)
async def resolve_url(state: ProxyState) -> StepOutcome:
    """
    Resolve the outbound URL.

    The base target (target plus URL decorator) is computed once per options instance
    when ``memoize_url`` is on and reused afterwards. The inbound route path and query
    are always applied per request.
    """
    options = state.options
    memo = options.memoized_url

    if options.memoize_url and memo.value is not None:
        base = memo.value
    else:
        base = await _compute_base_url(state)
        if options.memoize_url:
            memo.value = base

    if options.secure:
        base = base.copy_with(scheme="https")

    state.url = join_url(base, state.route_path, state.query_string)
    return Continue(state)


@pipeline_step(AssemblyError)
async def assemble_request(state: ProxyState) -> StepOutcome:
    """Build the outbound request descriptor, then let ``request_init_decorator`` replace it."""
    options = state.options
    request = state.request

    headers = forwarded_headers(request.headers.items(), options.preserve_host_header, options.headers)
    body = await read_request_body(request, options)

    init = ProxyRequestInit(
        method=options.method or request.method.upper(),
        headers=headers,
        body=body,
        follow_redirects=options.follow_redirects,
    )

    decorator = options.request_init_decorator
    if decorator is not None:
        decorated = await maybe_await(decorator(init, request))
        if isinstance(decorated, ProxyRequestInit):
            init = decorated
        else:
            init = ProxyRequestInit.model_validate(decorated)

    state.request_init = init
    return Continue(state)


@pipeline_step(DispatchError)
async def dispatch_request(state: ProxyState) -> StepOutcome:
    """
    Send the outbound request. Exactly one attempt is made.

    When ``timeout_ms`` is set the whole exchange is bounded by it and an overrun
    cancels the in-flight call.
    """
    assert state.url is not None and state.request_init is not None
    init = state.request_init
    url = state.url
    options = state.options
    timeout = options.timeout_seconds

    client = state.client
    owns_client = client is None
    if client is None:
        client = httpx.AsyncClient()

    try:
        state.proxy_request = client.build_request(
            init.method,
            url,
            headers=init.headers,
            content=init.body,
            timeout=timeout,
        )
        logger.bind(method=init.method, url=str(url)).debug(
            "Dispatching proxied request", headers=scrub_sensitive_data(init.headers)
        )

        send = client.send(state.proxy_request, follow_redirects=init.follow_redirects)
        if timeout is None:
            proxy_response = await send
        else:
            proxy_response = await asyncio.wait_for(send, timeout)

    except (asyncio.TimeoutError, httpx.TimeoutException) as e:
        raise ProxyTimeoutError(f"Proxied request to {url} timed out after {options.timeout_ms}ms") from e
    except (httpx.HTTPError, OSError) as e:
        raise DispatchError(f"Proxied request to {url} failed: {e}") from e
    finally:
        if owns_client:
            await client.aclose()

    logger.bind(method=init.method, url=str(url)).debug(
        "Proxied request returned", status_code=proxy_response.status_code
    )
    state.proxy_response = proxy_response
    state.proxy_response_data = decode_response_body(proxy_response)
    return Continue(state)


@pipeline_step(FilterError)
async def filter_response(state: ProxyState) -> StepOutcome:
    """Discard the proxied response when ``filter_response(proxy_response, data)`` is truthy."""
    skip = await maybe_await(state.options.filter_response(state.proxy_response, state.proxy_response_data))
    if skip:
        return ShortCircuit()
    return Continue(state)


@pipeline_step(DecorationError)
async def decorate_response(state: ProxyState) -> StepOutcome:
    """Apply the response header decorator, then the response body decorator."""
    assert state.proxy_response is not None
    options = state.options

    headers = response_headers(state.proxy_response)
    if options.response_header_decorator is not None:
        decorated = await maybe_await(
            options.response_header_decorator(
                headers, state.request, state.response, state.proxy_request, state.proxy_response
            )
        )
        if decorated is None:
            raise ValueError("response_header_decorator must return the headers to send")
        headers = decorated if isinstance(decorated, httpx.Headers) else httpx.Headers(decorated)

    data = state.proxy_response_data
    if options.response_body_decorator is not None:
        data = await maybe_await(
            options.response_body_decorator(state.request, state.response, state.proxy_response, data)
        )

    state.response_headers = headers
    state.response_body = data
    return Continue(state)


@pipeline_step(DeliveryError)
async def deliver_response(state: ProxyState) -> StepOutcome:
    """
    Write status, headers and body onto the host response handle.

    HEAD responses carry no body and keep the upstream content-length.
    """
    assert state.proxy_response is not None and state.response_headers is not None
    upstream = state.proxy_response
    headers = state.response_headers
    is_head = state.request.method.upper() == "HEAD"

    data = state.response_body
    if state.options.response_body_decorator is None:
        body = upstream.content
    else:
        if not isinstance(data, (bytes, bytearray, memoryview, str, type(None))) and not is_json(
            media_type(headers.get("content-type"))
        ):
            headers["content-type"] = JSON_MEDIA_TYPE
        body = encode_response_body(data, headers.get("content-type"))

    status_code = upstream.status_code
    raw_headers = [
        (key.lower().encode("latin-1"), value.encode("latin-1"))
        for key, value in headers.multi_items()
        if key.lower() != "content-length"
    ]
    if is_head:
        body = b""
        length = upstream.headers.get("content-length")
        if length is not None:
            raw_headers.append((b"content-length", length.encode("latin-1")))
    elif not (status_code < 200 or status_code in (204, 304)):
        raw_headers.append((b"content-length", str(len(body)).encode("latin-1")))

    response = state.response
    response.status_code = status_code
    response.body = body
    response.raw_headers[:] = raw_headers
    return Continue(state)
