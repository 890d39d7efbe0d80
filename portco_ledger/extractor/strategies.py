"""Ordered extraction strategies with a uniform result type.

A strategy is a named callable returning a :class:`StrategyResult`. The
:func:`run_strategies` coordinator tries strategies in order and stops at the
first success. A ``RETRYABLE_FAILURE`` moves on to the next strategy; a
``FATAL_FAILURE`` stops the chain. Exceptions raised by a strategy are logged
and recorded as retryable failures so that one misbehaving strategy never
aborts the chain.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from portco_ledger.config import setup_logging

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

logger = setup_logging(__name__)

__all__ = [
    "ChainOutcome",
    "Strategy",
    "StrategyResult",
    "StrategyStatus",
    "run_strategies",
]

T = TypeVar("T")


class StrategyStatus(Enum):
    """Outcome of a single strategy."""

    SUCCESS = "success"
    RETRYABLE_FAILURE = "retryable_failure"
    FATAL_FAILURE = "fatal_failure"


@dataclass(frozen=True)
class StrategyResult(Generic[T]):
    """Uniform result of one strategy attempt."""

    status: StrategyStatus
    data: T | None = None
    error: str | None = None

    @classmethod
    def success(cls, data: T) -> StrategyResult[T]:
        return cls(status=StrategyStatus.SUCCESS, data=data)

    @classmethod
    def retryable(cls, error: str) -> StrategyResult[T]:
        return cls(status=StrategyStatus.RETRYABLE_FAILURE, error=error)

    @classmethod
    def fatal(cls, error: str) -> StrategyResult[T]:
        return cls(status=StrategyStatus.FATAL_FAILURE, error=error)

    @property
    def ok(self) -> bool:
        return self.status is StrategyStatus.SUCCESS


@dataclass(frozen=True)
class Strategy(Generic[T]):
    """A named extraction attempt."""

    name: str
    run: Callable[[], StrategyResult[T]]


@dataclass(frozen=True)
class ChainOutcome(Generic[T]):
    """Result of a strategy chain: the winning result plus every attempt."""

    result: StrategyResult[T]
    strategy: str | None = None
    attempts: tuple[dict[str, Any], ...] = field(default_factory=tuple)

    @property
    def ok(self) -> bool:
        return self.result.ok


def run_strategies(strategies: Sequence[Strategy[T]]) -> ChainOutcome[T]:
    """Try each strategy in order until one succeeds.

    Parameters
    ----------
    strategies : Sequence[Strategy]
        Strategies in priority order.

    Returns
    -------
    ChainOutcome
        The successful result and its strategy name, or the last failure
        (``strategy`` is ``None``) when nothing succeeded.
    """
    attempts: list[dict[str, Any]] = []
    last: StrategyResult[T] = StrategyResult.retryable("no strategies configured")

    for strategy in strategies:
        try:
            result = strategy.run()
        except Exception as e:
            logger.exception("Strategy '%s' raised", strategy.name)
            result = StrategyResult.retryable(f"{type(e).__name__}: {e}")

        attempts.append({"strategy": strategy.name, "status": result.status.value, "error": result.error})

        if result.ok:
            logger.info("Strategy '%s' succeeded", strategy.name)
            return ChainOutcome(result=result, strategy=strategy.name, attempts=tuple(attempts))

        last = result
        if result.status is StrategyStatus.FATAL_FAILURE:
            logger.warning("Strategy '%s' failed fatally: %s", strategy.name, result.error)
            break
        logger.info("Strategy '%s' failed, trying next: %s", strategy.name, result.error)

    return ChainOutcome(result=last, strategy=None, attempts=tuple(attempts))
