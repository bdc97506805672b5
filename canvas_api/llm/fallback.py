"""
Ordered fallback chains

A chain is a list of strategies tried in order, e.g.

    primary model -> secondary provider -> local template

Each strategy either returns a value or raises. `fallback_on` decides whether
a failure lets the chain move on; failures it rejects are re-raised as-is.
"""

import inspect
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Generic, List, Sequence, TypeVar, Union

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _always(exc: Exception) -> bool:
    return True


@dataclass
class Strategy(Generic[T]):
    name: str
    run: Callable[[], Union[T, Awaitable[T]]]
    fallback_on: Callable[[Exception], bool] = _always


@dataclass
class StrategyFailure:
    strategy: str
    error: Exception


@dataclass
class FallbackResult(Generic[T]):
    value: T
    strategy: str
    position: int
    failures: List[StrategyFailure] = field(default_factory=list)

    @property
    def used_fallback(self) -> bool:
        return self.position > 0


class FallbackExhausted(Exception):
    """Every strategy failed"""

    def __init__(self, failures: List[StrategyFailure]):
        self.failures = failures
        names = ", ".join(f"{f.strategy}: {f.error}" for f in failures)
        super().__init__(f"All strategies failed ({names})")

    @property
    def last_error(self) -> Exception:
        return self.failures[-1].error


async def run_fallback_chain(strategies: Sequence[Strategy[T]]) -> FallbackResult[T]:
    if not strategies:
        raise ValueError("A fallback chain needs at least one strategy")

    failures: List[StrategyFailure] = []
    for position, strategy in enumerate(strategies):
        try:
            value = strategy.run()
            if inspect.isawaitable(value):
                value = await value
        except Exception as e:
            if not strategy.fallback_on(e):
                raise
            logger.warning(f"Strategy '{strategy.name}' failed: {e}")
            failures.append(StrategyFailure(strategy.name, e))
            continue
        if position > 0:
            logger.info(f"Served by fallback strategy '{strategy.name}'")
        return FallbackResult(value=value, strategy=strategy.name, position=position, failures=failures)

    raise FallbackExhausted(failures)
