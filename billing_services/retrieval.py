"""
billing_services.retrieval -- Staged, cancellable retrieval of engine inputs.

Responsibility:
    Fetch the agency calculation config and then the booking's commission
    feed, in that order, and publish the parsed result unless a newer
    retrieval has started in the meantime.

Architecture position:
    Services -- imperative shell around the pure engines. Talks to host
    data sources through the ``CalcConfigSource`` and
    ``CommissionFeedSource`` protocols; owns no I/O of its own.

Invariants enforced:
    - Stages run sequentially: the commission feed is fetched only after
      the config stage has resolved.
    - Starting a retrieval cancels the previous token. Every state commit
      checks, under the lock, that the committing token is still the
      current one, so a late result never overwrites a newer one.
    - Sequence ids increase monotonically per pipeline instance.

Failure modes:
    - A source failure (including ``ConfigurationUnavailableError`` and
      malformed payloads) never propagates: the stage falls back to
      defaults and the result is flagged ``using_defaults``.
    - A cancelled or superseded run returns ``None``.
"""

from __future__ import annotations

import threading
from concurrent.futures import Executor, Future
from dataclasses import dataclass
from typing import Any, Protocol

from billing_config.loader import parse_calc_config, parse_commission_feed
from billing_config.schema import CalcConfig, CommissionFeed
from billing_kernel.exceptions import RetrievalCancelledError
from billing_kernel.logging_config import LogContext, get_logger

logger = get_logger("services.retrieval")


class CancellationToken:
    """Cancellation flag for one retrieval sequence."""

    def __init__(self, sequence_id: int):
        self.sequence_id = sequence_id
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        """Raise ``RetrievalCancelledError`` once cancelled; sources may call this."""
        if self.cancelled:
            raise RetrievalCancelledError(self.sequence_id)

    def __repr__(self) -> str:
        return f"CancellationToken(sequence_id={self.sequence_id}, cancelled={self.cancelled})"


class CalcConfigSource(Protocol):
    """Host collaborator returning the raw agency calculation config."""

    def fetch_calc_config(self, token: CancellationToken) -> Any: ...


class CommissionFeedSource(Protocol):
    """Host collaborator returning the raw commission feed of a booking."""

    def fetch_commission_feed(self, booking_id: str, token: CancellationToken) -> Any: ...


@dataclass(frozen=True)
class RetrievalResult:
    """Parsed inputs of one completed retrieval sequence."""

    sequence_id: int
    booking_id: str
    calc_config: CalcConfig
    commission_feed: CommissionFeed | None
    config_using_defaults: bool = False
    commission_using_defaults: bool = False

    @property
    def using_defaults(self) -> bool:
        return self.config_using_defaults or self.commission_using_defaults


class StagedRetrieval:
    """
    Sequential two-stage retrieval with last-start-wins semantics.

    Contract:
        ``run`` (or ``submit``) performs one sequence; ``current`` is the
        result of the newest sequence that completed without being
        superseded. Thread-safe.
    """

    def __init__(
        self,
        config_source: CalcConfigSource,
        feed_source: CommissionFeedSource,
    ):
        self._config_source = config_source
        self._feed_source = feed_source
        self._lock = threading.Lock()
        self._sequence_id = 0
        self._token: CancellationToken | None = None
        self._config: CalcConfig | None = None
        self._current: RetrievalResult | None = None

    @property
    def sequence_id(self) -> int:
        return self._sequence_id

    @property
    def current(self) -> RetrievalResult | None:
        """Latest committed result."""
        with self._lock:
            return self._current

    @property
    def current_config(self) -> CalcConfig | None:
        """Config committed by the latest sequence's first stage."""
        with self._lock:
            return self._config

    def start(self) -> CancellationToken:
        """Begin a new sequence, cancelling the one in flight."""
        with self._lock:
            if self._token is not None:
                self._token.cancel()
            self._sequence_id += 1
            self._token = CancellationToken(self._sequence_id)
            return self._token

    def cancel(self) -> None:
        """Cancel the in-flight sequence, if any."""
        with self._lock:
            if self._token is not None:
                self._token.cancel()

    def _is_live(self, token: CancellationToken) -> bool:
        # Caller holds the lock.
        return (
            not token.cancelled
            and self._token is token
            and token.sequence_id == self._sequence_id
        )

    def _discard(self, stage: str) -> None:
        logger.info("retrieval_discarded", extra={
            "stage": stage,
            "latest_sequence_id": self._sequence_id,
        })

    def _fetch_config(self, token: CancellationToken) -> tuple[CalcConfig, bool]:
        try:
            payload = self._config_source.fetch_calc_config(token)
        except RetrievalCancelledError:
            raise
        except Exception as exc:
            logger.warning("calc_config_unavailable", extra={
                "error_type": type(exc).__name__,
                "error": str(exc),
            })
            return CalcConfig.defaults(), True
        if payload is None:
            return CalcConfig.defaults(), True
        return parse_calc_config(payload), False

    def _fetch_feed(
        self, booking_id: str, token: CancellationToken
    ) -> tuple[CommissionFeed | None, bool]:
        try:
            payload = self._feed_source.fetch_commission_feed(booking_id, token)
            if payload is None:
                return None, True
            return parse_commission_feed(payload), False
        except RetrievalCancelledError:
            raise
        except Exception as exc:
            logger.warning("commission_feed_unavailable", extra={
                "error_type": type(exc).__name__,
                "error": str(exc),
            })
            return None, True

    def run(
        self,
        booking_id: str,
        token: CancellationToken | None = None,
    ) -> RetrievalResult | None:
        """
        Run both stages for ``booking_id``.

        Returns:
            The committed result, or ``None`` when the sequence was
            cancelled or superseded before it could commit.
        """
        if token is None:
            token = self.start()
        with LogContext.bind(booking_id=booking_id, sequence_id=token.sequence_id):
            try:
                config, config_defaults = self._fetch_config(token)
                with self._lock:
                    if not self._is_live(token):
                        self._discard("calc_config")
                        return None
                    self._config = config

                feed, feed_defaults = self._fetch_feed(booking_id, token)
            except RetrievalCancelledError:
                self._discard("cancelled_by_source")
                return None

            result = RetrievalResult(
                sequence_id=token.sequence_id,
                booking_id=booking_id,
                calc_config=config,
                commission_feed=feed,
                config_using_defaults=config_defaults,
                commission_using_defaults=feed_defaults,
            )
            with self._lock:
                if not self._is_live(token):
                    self._discard("commission_feed")
                    return None
                self._current = result

            logger.info("retrieval_committed", extra={
                "using_defaults": result.using_defaults,
                "config_using_defaults": config_defaults,
                "commission_using_defaults": feed_defaults,
            })
            return result

    def submit(self, booking_id: str, executor: Executor) -> Future:
        """Start a sequence now and run it on ``executor``."""
        token = self.start()
        return executor.submit(self.run, booking_id, token)
