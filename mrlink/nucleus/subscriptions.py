# mrlink/nucleus/subscriptions.py
import logging
from typing import Any, Callable, Dict, List, Tuple

from mrlink.nucleus import naming

logger = logging.getLogger(__name__)

Callback = Callable[..., Any]


class SubscriptionIndex:
    """
    The three lookup tables inbound envelopes are fanned out through:
    by full sender name, by method name, and by ``full_name.onMethod``.

    Subscribing appends and never deduplicates, so a callback added twice
    fires twice. Unsubscribing removes the first equal callback only.
    """

    def __init__(self):
        self._by_name: Dict[str, List[Callback]] = {}
        self._by_method: Dict[str, List[Callback]] = {}
        self._by_name_method: Dict[str, List[Callback]] = {}

    # --- Subscribe ---

    def subscribe_by_name(self, full_name: str, callback: Callback) -> None:
        self._by_name.setdefault(full_name, []).append(callback)

    def subscribe_by_method(self, method: str, callback: Callback) -> None:
        self._by_method.setdefault(method, []).append(callback)

    def subscribe_by_name_method(self, full_name: str, method: str, callback: Callback) -> None:
        """``method`` may be the topic (``publishState``) or the callback name (``onState``)."""
        self._by_name_method.setdefault(naming.method_key(full_name, method), []).append(callback)

    # --- Unsubscribe ---

    def unsubscribe_by_name(self, full_name: str, callback: Callback) -> bool:
        return self._remove(self._by_name, full_name, callback)

    def unsubscribe_by_method(self, method: str, callback: Callback) -> bool:
        return self._remove(self._by_method, method, callback)

    def unsubscribe_by_name_method(self, full_name: str, method: str, callback: Callback) -> bool:
        return self._remove(self._by_name_method, naming.method_key(full_name, method), callback)

    # --- Lookup ---

    def by_name(self, full_name: str) -> Tuple[Callback, ...]:
        return tuple(self._by_name.get(full_name, ()))

    def by_method(self, method: str) -> Tuple[Callback, ...]:
        return tuple(self._by_method.get(method, ()))

    def by_name_method(self, full_name: str, method: str) -> Tuple[Callback, ...]:
        return tuple(self._by_name_method.get(naming.method_key(full_name, method), ()))

    def __len__(self) -> int:
        return sum(
            len(callbacks)
            for index in (self._by_name, self._by_method, self._by_name_method)
            for callbacks in index.values()
        )

    @staticmethod
    def _remove(index: Dict[str, List[Callback]], key: str, callback: Callback) -> bool:
        callbacks = index.get(key)
        if not callbacks or callback not in callbacks:
            logger.debug(f"[Subscriptions] No callback to remove under '{key}'.")
            return False
        callbacks.remove(callback)
        if not callbacks:
            del index[key]
        return True
