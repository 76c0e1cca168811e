# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_relay

from functools import partial
from typing import Sequence, Tuple

from loguru import logger
from starlette.responses import Response

from coreason_relay.exceptions import ProxyError
from coreason_relay.models import PipelineStage
from coreason_relay.outcomes import Continue, ShortCircuit, Step
from coreason_relay.payload import maybe_await
from coreason_relay.state import ProxyState
from coreason_relay.steps import (
    assemble_request,
    decorate_response,
    deliver_response,
    dispatch_request,
    filter_request,
    filter_response,
    resolve_url,
)

PIPELINE: Tuple[Tuple[PipelineStage, Step], ...] = (
    (PipelineStage.FILTERING, filter_request),
    (PipelineStage.RESOLVING, resolve_url),
    (PipelineStage.ASSEMBLING, assemble_request),
    (PipelineStage.DISPATCHING, dispatch_request),
    (PipelineStage.RESPONSE_FILTERING, filter_response),
    (PipelineStage.DECORATING, decorate_response),
    (PipelineStage.DELIVERING, deliver_response),
)


async def run_pipeline(state: ProxyState, steps: Sequence[Tuple[PipelineStage, Step]] = PIPELINE) -> Response:
    """
    Run the proxy steps in order over one request's state.

    Returns:
        Response: The host response handle on success, the response produced by
        ``call_next`` on a short-circuit, or the error handler's response on failure.
    """
    for stage, step in steps:
        state.stage = stage
        outcome = await step(state)

        if isinstance(outcome, Continue):
            state = outcome.state
        elif isinstance(outcome, ShortCircuit):
            state.stage = PipelineStage.SHORT_CIRCUITED
            return await state.call_next(state.request)
        else:
            state.stage = PipelineStage.FAILED
            return await handle_failure(state, outcome.error)

    state.stage = PipelineStage.DONE
    return state.response


async def handle_failure(state: ProxyState, error: ProxyError) -> Response:
    """
    Route a pipeline failure to the configured error handler.

    The handler is called as ``error_handler(error, response, call_next)`` where
    ``call_next`` takes no arguments and continues the host chain. A handler that
    returns None leaves the host response handle as the result.
    """
    logger.bind(stage=error.stage, error_type=type(error).__name__, url=str(state.url)).warning(
        f"Proxy pipeline failed: {error}"
    )
    continue_chain = partial(state.call_next, state.request)
    result = await maybe_await(state.options.error_handler(error, state.response, continue_chain))
    return result if result is not None else state.response
