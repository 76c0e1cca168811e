# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_relay

from dataclasses import dataclass
from functools import wraps
from typing import Awaitable, Callable, Type, Union

from coreason_relay.exceptions import ProxyError
from coreason_relay.state import ProxyState


@dataclass(frozen=True)
class Continue:
    """The step succeeded; run the next step with ``state``."""

    state: ProxyState


@dataclass(frozen=True)
class ShortCircuit:
    """A filter skipped the proxy; hand control back to the host untouched."""


@dataclass(frozen=True)
class Failure:
    """The step failed; route ``error`` to the error handler."""

    error: ProxyError


StepOutcome = Union[Continue, ShortCircuit, Failure]
Step = Callable[[ProxyState], Awaitable[StepOutcome]]


def pipeline_step(error_cls: Type[ProxyError]) -> Callable[[Step], Step]:
    """
    Decorator that turns exceptions escaping a step into a tagged Failure.

    ProxyErrors raised by the step are kept as they are. Anything else is wrapped
    in ``error_cls`` with the original exception chained as ``__cause__``.
    """

    def decorator(func: Step) -> Step:
        @wraps(func)
        async def wrapper(state: ProxyState) -> StepOutcome:
            try:
                return await func(state)
            except ProxyError as e:
                if e.stage is None:
                    e.stage = state.stage.value
                return Failure(e)
            except Exception as e:
                error = error_cls(f"{func.__name__} failed: {e}", stage=state.stage.value)
                error.__cause__ = e
                return Failure(error)

        return wrapper

    return decorator
