"""
Status channel — loading flag, one error, one success message.

Setting either message (re)arms a single timer; when it fires, both the error
and the success message are cleared together. The loading flag is driven by
an in-flight counter so overlapping operations don't clear each other's
spinner.
"""

from __future__ import annotations

import asyncio
import logging

from panel.config import settings

logger = logging.getLogger(__name__)


class StatusChannel:
    """Shared status read by the UI and written by coordinators and reconcilers."""

    def __init__(self, clear_after: float | None = None) -> None:
        self.clear_after = settings.STATUS_CLEAR_SECONDS if clear_after is None else clear_after
        self.error: str | None = None
        self.success_message: str | None = None
        self._in_flight = 0
        self._timer: asyncio.TimerHandle | None = None

    @property
    def loading(self) -> bool:
        return self._in_flight > 0

    def begin(self) -> None:
        """Mark one operation as in flight."""
        self._in_flight += 1

    def end(self) -> None:
        if self._in_flight > 0:
            self._in_flight -= 1

    def set_error(self, message: str) -> None:
        self.error = message
        self._arm()

    def set_success(self, message: str) -> None:
        self.success_message = message
        self._arm()

    def clear(self) -> None:
        """Clear both messages at once. Loading is left alone."""
        self.error = None
        self.success_message = None
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def snapshot(self) -> dict[str, object]:
        return {
            "loading": self.loading,
            "error": self.error,
            "success_message": self.success_message,
        }

    def _arm(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self.clear_after <= 0:
            return
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.clear_after, self._expire)

    def _expire(self) -> None:
        self._timer = None
        self.error = None
        self.success_message = None
        logger.debug("status: messages cleared")
