"""Normalisation of raw device fixes before they reach the matcher."""

from __future__ import annotations

import logging
import threading
from typing import Optional

from ..config import FEED_ACCURACY_CEILING_M, FEED_TARGET_INTERVAL_S
from ..models import RawFix
from ..stream import Stream


class LocationFeed:
    """Rejects unusable fixes, throttles bursts and clamps poor accuracy.

    Accepted fixes are published on :attr:`output` in arrival order.
    """

    def __init__(
        self,
        target_interval_s: float = FEED_TARGET_INTERVAL_S,
        accuracy_ceiling_m: float = FEED_ACCURACY_CEILING_M,
    ) -> None:
        if target_interval_s < 0:
            raise ValueError("target_interval_s must be >= 0")
        if accuracy_ceiling_m <= 0:
            raise ValueError("accuracy_ceiling_m must be greater than zero")
        self._target_interval = target_interval_s
        self._accuracy_ceiling = accuracy_ceiling_m
        self._lock = threading.Lock()
        self._last_timestamp: Optional[float] = None
        self._output: Stream[RawFix] = Stream("location_feed")
        self._log = logging.getLogger(self.__class__.__name__)

    @property
    def output(self) -> Stream[RawFix]:
        return self._output

    def push(self, fix: RawFix) -> Optional[RawFix]:
        """Filter ``fix``; returns the normalised fix when it was published."""

        with self._lock:
            if not self._should_accept(fix):
                return None
            if (
                self._last_timestamp is not None
                and fix.timestamp - self._last_timestamp < self._target_interval * 0.4
            ):
                self._log.debug("Dropping high-frequency fix at %.3f", fix.timestamp)
                return None
            normalized = self._normalize(fix)
            self._last_timestamp = normalized.timestamp
            self._output.publish(normalized)
            return normalized

    def reset(self) -> None:
        with self._lock:
            self._last_timestamp = None

    def _should_accept(self, fix: RawFix) -> bool:
        if not fix.is_finite:
            self._log.debug("Rejecting fix with non-finite coordinate or timestamp")
            return False
        # Also rejects NaN accuracy.
        if not fix.horizontal_accuracy >= 0:
            self._log.debug("Rejecting fix with invalid accuracy %s", fix.horizontal_accuracy)
            return False
        if fix.horizontal_accuracy > self._accuracy_ceiling * 4:
            self._log.debug("Rejecting fix with accuracy %.0f m", fix.horizontal_accuracy)
            return False
        if self._last_timestamp is not None and fix.timestamp < self._last_timestamp:
            self._log.debug("Rejecting out-of-order fix at %.3f", fix.timestamp)
            return False
        return True

    def _normalize(self, fix: RawFix) -> RawFix:
        if fix.horizontal_accuracy <= self._accuracy_ceiling:
            return fix
        return fix.with_accuracy(self._accuracy_ceiling)


__all__ = ["LocationFeed"]
