# app/services/refresh_throttle.py
import threading
import time
import uuid
from typing import Callable


class RefreshThrottle:
    """
    Decide whether a change notification should trigger a refetch.

    Bursts of ordinary updates inside min_interval collapse into the first
    one. A new-order notification skips that window (the operator must see
    it quickly) but two of them still need new_order_spacing between them.
    """

    def __init__(
        self,
        min_interval: float = 3.0,
        new_order_spacing: float = 2.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.min_interval = min_interval
        self.new_order_spacing = new_order_spacing
        self._clock = clock
        self._last_refetch: float | None = None
        self._last_new_order: float | None = None

    def should_refetch(self, is_new_order: bool = False) -> bool:
        now = self._clock()
        if is_new_order:
            if (
                self._last_new_order is not None
                and now - self._last_new_order < self.new_order_spacing
            ):
                return False
            self._last_new_order = now
            self._last_refetch = now
            return True

        if self._last_refetch is not None and now - self._last_refetch < self.min_interval:
            return False
        self._last_refetch = now
        return True

    def reset(self) -> None:
        self._last_refetch = None
        self._last_new_order = None


class ThrottleRegistry:
    """One RefreshThrottle per establishment, created on first use."""

    def __init__(
        self,
        min_interval: float = 3.0,
        new_order_spacing: float = 2.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.min_interval = min_interval
        self.new_order_spacing = new_order_spacing
        self._clock = clock
        self._throttles: dict[uuid.UUID, RefreshThrottle] = {}
        # sync routes run in the threadpool
        self._lock = threading.Lock()

    def for_establishment(self, establishment_id: uuid.UUID) -> RefreshThrottle:
        with self._lock:
            throttle = self._throttles.get(establishment_id)
            if throttle is None:
                throttle = RefreshThrottle(
                    min_interval=self.min_interval,
                    new_order_spacing=self.new_order_spacing,
                    clock=self._clock,
                )
                self._throttles[establishment_id] = throttle
            return throttle

    def should_refetch(self, establishment_id: uuid.UUID, is_new_order: bool = False) -> bool:
        throttle = self.for_establishment(establishment_id)
        with self._lock:
            return throttle.should_refetch(is_new_order=is_new_order)
