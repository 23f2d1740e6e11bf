"""Process-wide, reference-counted vendor SDK lifetime."""

from __future__ import annotations

import contextlib
import threading
from dataclasses import dataclass

from labops.core.logging_utils import get_module_logger

logger = get_module_logger("SdkContext")


@dataclass(frozen=True)
class SdkContextSnapshot:
    initialized: bool
    active_handles: int
    init_calls: int
    shutdown_calls: int


class SdkContext:
    """Handle on the shared SDK runtime.

    The first acquire across the process runs global init and the last
    release runs global shutdown. Use as a context manager or call
    ``release`` explicitly; a dropped handle also releases on collection.
    """

    _lock = threading.Lock()
    _initialized = False
    _active_handles = 0
    _init_calls = 0
    _shutdown_calls = 0

    def __init__(self) -> None:
        self._acquired = False

    @property
    def acquired(self) -> bool:
        return self._acquired

    def acquire(self) -> None:
        if self._acquired:
            return
        cls = type(self)
        with cls._lock:
            if not cls._initialized:
                self._initialize_sdk()
                cls._initialized = True
                cls._init_calls += 1
            cls._active_handles += 1
            self._acquired = True

    def release(self) -> None:
        if not self._acquired:
            return
        cls = type(self)
        with cls._lock:
            if cls._active_handles > 0:
                cls._active_handles -= 1
            self._acquired = False
            if cls._active_handles == 0 and cls._initialized:
                self._shutdown_sdk()
                cls._initialized = False
                cls._shutdown_calls += 1

    def _initialize_sdk(self) -> None:
        # No vendor SDK is linked; init always succeeds.
        logger.debug("sdk global init")

    def _shutdown_sdk(self) -> None:
        logger.debug("sdk global shutdown")

    def __enter__(self) -> "SdkContext":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    def __del__(self) -> None:
        with contextlib.suppress(Exception):  # pragma: no cover - interpreter shutdown
            self.release()

    @classmethod
    def debug_snapshot(cls) -> SdkContextSnapshot:
        with cls._lock:
            return SdkContextSnapshot(
                initialized=cls._initialized,
                active_handles=cls._active_handles,
                init_calls=cls._init_calls,
                shutdown_calls=cls._shutdown_calls,
            )

    @classmethod
    def debug_reset_for_tests(cls) -> None:
        with cls._lock:
            cls._initialized = False
            cls._active_handles = 0
            cls._init_calls = 0
            cls._shutdown_calls = 0


__all__ = ["SdkContext", "SdkContextSnapshot"]
