"""lodestar_rag.common.retry

Retry-with-backoff combinator for calls to external collaborators.

Embedding providers and the similarity index are remote services whose
transient failures (rate limiting, dropped connections) should be retried
with bounded exponential backoff. Retrying is kept out of the chunking and
ranking code and applied by orchestration code through
:func:`retry_with_backoff`.

Classes
-------
RetryPolicy
    Attempts, delays and retryable exception types.

Functions
---------
retry_with_backoff
    Call an operation under a :class:`RetryPolicy`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Optional, Tuple, Type, TypeVar

from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from lodestar_rag.common.errors import (
    ConfigurationError,
    RateLimitError,
    TransportError,
    VectorStoreError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_RETRYABLE: Tuple[Type[BaseException], ...] = (
    RateLimitError,
    TransportError,
    VectorStoreError,
)


@dataclass(frozen=True)
class RetryPolicy:
    """How to retry an external call.

    Attributes
    ----------
    max_attempts : int
        Total number of attempts, including the first. Defaults to ``3``.
    initial_delay : float
        Delay in seconds before the first retry. Defaults to ``1.0``.
    max_delay : float
        Upper bound in seconds on the exponential part of a delay, before
        jitter. Defaults to ``10.0``.
    jitter : float
        Maximum random jitter added to each delay. Defaults to ``0.5``.
    retry_on : Tuple[Type[BaseException], ...]
        Exception types that trigger a retry. Anything else propagates
        immediately.
    """
    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 10.0
    jitter: float = 0.5
    retry_on: Tuple[Type[BaseException], ...] = field(default=DEFAULT_RETRYABLE)

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ConfigurationError(
                f"max_attempts must be at least 1, got {self.max_attempts}"
            )
        if self.initial_delay < 0 or self.max_delay < 0 or self.jitter < 0:
            raise ConfigurationError("retry delays must be non-negative")

    @classmethod
    def from_config(cls, cfg: Optional[Mapping[str, Any]]) -> "RetryPolicy":
        """Build a policy from a ``retry`` configuration mapping."""
        cfg = dict(cfg or {})
        return cls(
            max_attempts=int(cfg.get("max_attempts", 3)),
            initial_delay=float(cfg.get("initial_delay", 1.0)),
            max_delay=float(cfg.get("max_delay", 10.0)),
            jitter=float(cfg.get("jitter", 0.5)),
        )


def _log_before_sleep(name: str, policy: RetryPolicy):
    def _log(retry_state) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "%s failed (attempt %d/%d): %s; retrying",
            name,
            retry_state.attempt_number,
            policy.max_attempts,
            exc,
        )

    return _log


def retry_with_backoff(
        operation: Callable[[], T],
        policy: Optional[RetryPolicy] = None,
        *,
        name: str = "operation",
    ) -> T:
    """Call ``operation`` under ``policy``.

    Parameters
    ----------
    operation : Callable[[], T]
        Zero-argument callable to invoke.
    policy : RetryPolicy or None, optional
        Retry policy. Defaults to ``RetryPolicy()``.
    name : str, optional
        Label used in retry log messages.

    Returns
    -------
    T
        The value returned by the first successful attempt.

    Raises
    ------
    Exception
        The last exception raised by ``operation`` once attempts are
        exhausted, or the first non-retryable exception.
    """
    policy = policy or RetryPolicy()
    retrying = Retrying(
        retry=retry_if_exception_type(policy.retry_on),
        stop=stop_after_attempt(policy.max_attempts),
        wait=wait_exponential(multiplier=policy.initial_delay, max=policy.max_delay)
        + wait_random(0, policy.jitter),
        before_sleep=_log_before_sleep(name, policy),
        reraise=True,
    )
    return retrying(operation)


__all__ = [
    "RetryPolicy",
    "retry_with_backoff",
    "DEFAULT_RETRYABLE",
]
