"""In-process publish/subscribe for preset lifecycle events."""

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, Iterable, Iterator, List, Optional, Union

from ..models.config import utcnow

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    CREATED = "preset_created"
    UPDATED = "preset_updated"
    DELETED = "preset_deleted"
    APPLIED = "preset_applied"
    ID_CHANGED = "preset_id_changed"
    IMPORTED_BATCH = "presets_imported"
    FOLDER_MAPPING_CHANGED = "folder_mapping_changed"
    FOLDER_MAPPING_REMOVED = "folder_mapping_removed"
    TAG_MAPPING_CHANGED = "tag_mapping_changed"
    TAG_MAPPING_REMOVED = "tag_mapping_removed"
    GLOBAL_DEFAULT_CHANGED = "global_default_changed"
    GLOBAL_DEFAULT_CLEARED = "global_default_cleared"
    POLICY_CHANGED = "policy_changed"
    ERROR = "error"


@dataclass(frozen=True)
class PresetEvent:
    """A single notification; transient, never persisted."""
    kind: EventKind
    preset_id: Optional[str] = None
    key: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utcnow)

    @property
    def error(self) -> Optional[BaseException]:
        return self.data.get("error")


EventHandler = Callable[[PresetEvent], Any]


class Subscription:
    """Handle returned by :meth:`ChangeNotifier.subscribe`.

    Disposing it removes the handler; no reference to the handler itself
    is needed. Usable as a context manager for scoped subscriptions.
    """

    def __init__(self, notifier: "ChangeNotifier", kinds: Optional[FrozenSet[EventKind]], handler: EventHandler):
        self._notifier = notifier
        self.kinds = kinds
        self.handler = handler
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def accepts(self, kind: EventKind) -> bool:
        return self.kinds is None or kind in self.kinds

    def dispose(self) -> None:
        if self._active:
            self._active = False
            self._notifier._remove(self)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info) -> None:
        self.dispose()

    def __repr__(self) -> str:
        kinds = "*" if self.kinds is None else ",".join(sorted(k.value for k in self.kinds))
        return f"<Subscription kinds={kinds} active={self._active}>"


class ChangeNotifier:
    """Typed publish/subscribe over :class:`EventKind`.

    Handlers run in subscription order. A handler that raises is logged and
    reported on the ``ERROR`` channel; delivery continues with the next
    handler. Inside :meth:`deferred` events are queued and delivered only
    when the outermost block exits, so observers never see a half-applied
    mutation.
    """

    def __init__(self):
        self._subscriptions: List[Subscription] = []
        self._queue: List[PresetEvent] = []
        self._defer_depth = 0

    def subscribe(
        self,
        kinds: Union[EventKind, Iterable[EventKind], None],
        handler: EventHandler,
    ) -> Subscription:
        """Register ``handler`` for one kind, several kinds, or all (``None``)."""
        if kinds is None:
            kind_set = None
        elif isinstance(kinds, EventKind):
            kind_set = frozenset([kinds])
        else:
            kind_set = frozenset(kinds)
        subscription = Subscription(self, kind_set, handler)
        self._subscriptions.append(subscription)
        return subscription

    def subscribe_all(self, handler: EventHandler) -> Subscription:
        return self.subscribe(None, handler)

    def on_error(self, handler: EventHandler) -> Subscription:
        """Subscribe to the error channel."""
        return self.subscribe(EventKind.ERROR, handler)

    def _remove(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    def subscriber_count(self, kind: Optional[EventKind] = None) -> int:
        if kind is None:
            return len(self._subscriptions)
        return sum(1 for s in self._subscriptions if s.accepts(kind))

    def emit(
        self,
        kind: EventKind,
        preset_id: Optional[str] = None,
        key: Optional[str] = None,
        **data: Any,
    ) -> PresetEvent:
        event = PresetEvent(kind=kind, preset_id=preset_id, key=key, data=data)
        self.publish(event)
        return event

    def report(self, error: BaseException, **context: Any) -> PresetEvent:
        """Publish ``error`` on the error channel."""
        return self.emit(EventKind.ERROR, error=error, **context)

    def publish(self, event: PresetEvent) -> None:
        if self._defer_depth > 0:
            self._queue.append(event)
            return
        self._deliver(event)

    @contextmanager
    def deferred(self) -> Iterator[None]:
        """Queue events published inside the block until it completes."""
        self._defer_depth += 1
        try:
            yield
        finally:
            self._defer_depth -= 1
            if self._defer_depth == 0:
                self._flush()

    @property
    def pending(self) -> List[PresetEvent]:
        return list(self._queue)

    def _flush(self) -> None:
        while self._queue:
            event = self._queue.pop(0)
            self._deliver(event)

    def _deliver(self, event: PresetEvent) -> None:
        for subscription in list(self._subscriptions):
            if not subscription.active or not subscription.accepts(event.kind):
                continue
            try:
                subscription.handler(event)
            except Exception as e:
                logger.error(
                    f"Subscriber {subscription.handler!r} failed on {event.kind.value}: {e}",
                    exc_info=True,
                )
                # an error-channel handler failing is only logged
                if event.kind is not EventKind.ERROR:
                    self.report(e, source_event=event.kind, subscriber=repr(subscription.handler))

    def clear(self) -> None:
        for subscription in list(self._subscriptions):
            subscription.dispose()
        self._queue.clear()
