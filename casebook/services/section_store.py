"""
section_store.py - Local, immediately-mutable copy of one record with debounced autosave

A DebouncedSectionStore owns the editable copy of a single entity (a case
section, the coach details, a skill entry, a session with its skill entries)
together with its own timer handle. Edits land in the local copy at once;
the write to storage happens once the edits have been quiet for the debounce
window, and always carries the local data as it is when the timer fires.

Provides:
- DebouncedSectionStore - per-entity store with initialize / update / flush / close
- SyncState - UNINITIALIZED until the first remote snapshot or edit, then SYNCED
- merge_section_data(existing, updates) - section-aware merge of partial edits
"""

import asyncio
import copy
import inspect
import logging
from collections import deque
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Union

logger = logging.getLogger(__name__)

SaveCallback = Callable[[Dict[str, Any]], Union[Awaitable[None], None]]

# Notifications kept per store until the client reads them
MAX_NOTIFICATIONS = 20


class SyncState(str, Enum):
    UNINITIALIZED = "uninitialized"
    SYNCED = "synced"


class StoreClosedError(RuntimeError):
    """Raised when an edit reaches a store whose view was already closed."""


def merge_section_data(existing: Optional[Mapping[str, Any]], updates: Mapping[str, Any]) -> Dict[str, Any]:
    """Merge a partial section edit into the existing payload.

    Lists are replaced wholesale, nested dicts are merged one level deep and
    everything else is replaced.
    """
    if not existing:
        return dict(updates)

    merged = dict(existing)
    for key, update_value in updates.items():
        existing_value = existing.get(key)
        if isinstance(update_value, list):
            merged[key] = list(update_value)
        elif isinstance(update_value, dict) and isinstance(existing_value, dict):
            merged[key] = {**existing_value, **update_value}
        else:
            merged[key] = update_value
    return merged


class DebouncedSectionStore:
    """Debounced autosave for one entity.

    ``save`` receives a deep copy of the local data and may be a plain
    function or a coroutine function. A failed save leaves the local data
    alone, records a notification and waits for the next edit or flush.
    """

    def __init__(
        self,
        save: SaveCallback,
        debounce_ms: int,
        *,
        name: str = "",
        failure_message: str = "Failed to save changes",
    ):
        self.name = name
        self.delay = debounce_ms / 1000
        self.failure_message = failure_message
        self.state = SyncState.UNINITIALIZED
        self.dirty = False
        # True once any save has fired for this view; drives the "Saved" badge
        self.has_local_changes = False
        self.last_saved_at: Optional[datetime] = None
        self.last_error: Optional[str] = None
        self.closed = False
        self._save = save
        self._data: Dict[str, Any] = {}
        self._timer: Optional[asyncio.TimerHandle] = None
        self._in_flight: set = set()
        self._notifications: deque = deque(maxlen=MAX_NOTIFICATIONS)

    # -- local state -------------------------------------------------------

    @property
    def data(self) -> Dict[str, Any]:
        return self._data

    def initialize(self, remote_snapshot: Optional[Mapping[str, Any]]) -> bool:
        """Seed local data from storage. Only the first call has any effect."""
        if self.state is SyncState.SYNCED:
            logger.debug("Store %s already synced; ignoring remote snapshot", self.name)
            return False
        self._data = copy.deepcopy(dict(remote_snapshot or {}))
        self.state = SyncState.SYNCED
        return True

    def update_field(self, field: str, value: Any) -> Dict[str, Any]:
        return self.update_fields({field: value})

    def update_fields(self, updates: Mapping[str, Any]) -> Dict[str, Any]:
        """Shallow-apply ``updates`` and restart the debounce timer."""
        return self.replace({**self._data, **updates})

    def merge_fields(self, updates: Mapping[str, Any]) -> Dict[str, Any]:
        """Apply ``updates`` with merge_section_data semantics."""
        return self.replace(merge_section_data(self._data, updates))

    def replace(self, data: Mapping[str, Any]) -> Dict[str, Any]:
        if self.closed:
            raise StoreClosedError(f"Store {self.name} is closed")
        self._data = dict(data)
        # An edit before the first load still wins over the later snapshot
        self.state = SyncState.SYNCED
        self.dirty = True
        self._schedule()
        return self._data

    # -- timer -------------------------------------------------------------

    @property
    def pending(self) -> bool:
        return self._timer is not None

    @property
    def saving(self) -> bool:
        return bool(self._in_flight)

    def _schedule(self) -> None:
        loop = asyncio.get_running_loop()
        if self._timer is not None:
            self._timer.cancel()
        self._timer = loop.call_later(self.delay, self._fire)

    def _fire(self) -> None:
        self._timer = None
        task = asyncio.ensure_future(self._write())
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)

    async def _write(self) -> bool:
        snapshot = copy.deepcopy(self._data)
        self.dirty = False
        self.has_local_changes = True
        try:
            result = self._save(snapshot)
            if inspect.isawaitable(result):
                await result
        except Exception as exc:
            logger.warning("Save failed for %s: %s", self.name, exc)
            # Keep the edits; the next edit or flush writes them again
            self.dirty = True
            self.last_error = str(exc)
            self._notify("error", self.failure_message)
            return False
        self.last_saved_at = datetime.now(timezone.utc)
        self.last_error = None
        logger.debug("Saved %s", self.name)
        return True

    async def flush(self) -> bool:
        """Write the current local data now ("Save now")."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        return await self._write()

    def cancel(self) -> None:
        """Drop the pending timer. Writes already running are not touched."""
        if self._timer is None:
            return
        self._timer.cancel()
        self._timer = None
        if self.dirty:
            logger.warning("Dropped unsaved edits for %s on close", self.name)

    def discard(self) -> None:
        """Retire the store with its entity: drop the timer quietly and refuse further edits."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self.closed = True
        logger.debug("Discarded %s", self.name)

    async def wait_idle(self) -> None:
        """Wait for writes that have already started."""
        if self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

    async def close(self, flush_pending: bool = False) -> None:
        """Tear the view down: cancel (or flush) the timer, let running writes finish."""
        if flush_pending and self._timer is not None:
            await self.flush()
        else:
            self.cancel()
        self.closed = True
        await self.wait_idle()

    # -- status ------------------------------------------------------------

    def _notify(self, level: str, message: str) -> None:
        self._notifications.append({
            "level": level,
            "message": message,
            "at": datetime.now(timezone.utc).isoformat(),
        })

    def drain_notifications(self) -> List[Dict[str, str]]:
        items = list(self._notifications)
        self._notifications.clear()
        return items

    def status(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "dirty": self.dirty,
            "pending": self.pending,
            "saving": self.saving,
            "has_local_changes": self.has_local_changes,
            "last_saved_at": self.last_saved_at.isoformat() if self.last_saved_at else None,
            "last_error": self.last_error,
        }
