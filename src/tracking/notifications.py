"""
User-visible notifications.

Collects success/info/error messages for the user interface. Messages
can carry a key; a keyed message is suppressed while the same key was
already shown within the debounce window, so repeated failures surface
once instead of flooding the screen.
"""

import logging
import os
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, List, Optional

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

NOTIFICATION_DEBOUNCE_SECONDS = float(os.getenv('NOTIFICATION_DEBOUNCE_SECONDS', '10'))
NOTIFICATION_HISTORY_SIZE = int(os.getenv('NOTIFICATION_HISTORY_SIZE', '100'))

LEVELS = ('success', 'info', 'error')

_LOG_LEVELS = {
    'success': logging.INFO,
    'info': logging.INFO,
    'error': logging.WARNING,
}


@dataclass
class Notification:
    """A single message shown to the user."""

    message: str
    level: str = 'info'
    key: Optional[str] = None
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'message': self.message,
            'level': self.level,
            'key': self.key,
            'timestamp': self.timestamp,
        }


class NotificationCenter:
    """
    Fire-and-forget notification sink.

    Attributes:
        debounce_seconds: Suppression window for keyed messages
        history: Most recent notifications, oldest first
    """

    def __init__(
        self,
        debounce_seconds: float = NOTIFICATION_DEBOUNCE_SECONDS,
        history_size: int = NOTIFICATION_HISTORY_SIZE,
        clock: Callable[[], float] = time.time
    ):
        self.debounce_seconds = debounce_seconds
        self.history: Deque[Notification] = deque(maxlen=history_size)
        self._clock = clock
        self._last_shown: Dict[str, float] = {}
        self._listeners: List[Callable[[Notification], None]] = []

    def subscribe(self, listener: Callable[[Notification], None]) -> Callable[[], None]:
        """
        Register a listener called for every emitted notification.

        Returns:
            Function that removes the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def notify(self, message: str, level: str = 'info', key: Optional[str] = None) -> bool:
        """
        Emit a notification.

        Args:
            message: Text shown to the user
            level: One of success, info, error
            key: Optional de-duplication key

        Returns:
            True if emitted, False if suppressed by the debounce window
        """
        if level not in LEVELS:
            raise ValueError(f"Unknown notification level: {level}")

        now = self._clock()
        if key is not None:
            last = self._last_shown.get(key)
            if last is not None and now - last < self.debounce_seconds:
                logger.debug(f"Suppressed repeated notification '{key}'")
                return False
            self._last_shown[key] = now

        notification = Notification(message=message, level=level, key=key, timestamp=now)
        self.history.append(notification)
        logger.log(_LOG_LEVELS[level], f"[{level}] {message}")

        for listener in list(self._listeners):
            try:
                listener(notification)
            except Exception as e:
                logger.warning(f"Notification listener failed: {e}")
        return True

    def reset(self, key: str) -> None:
        """Forget when a key was last shown so it can be emitted again."""
        self._last_shown.pop(key, None)

    def recent(self, limit: int = 20) -> List[Notification]:
        """Most recent notifications, newest last."""
        if limit <= 0:
            return []
        return list(self.history)[-limit:]
