"""
session_editor.py - Editing state of one session and its skill entries

Each skill entry has its own short-window store; when an entry's edits go
quiet its snapshot is pushed into the session store, which autosaves the
session row together with all entries on a longer window. Saving replaces
every skill entry row of the session.

Provides:
- SessionEditor - load / update_session / add_skill / update_skill / remove_skill / save
"""

import logging
from typing import Any, Callable, Dict, List, Mapping, Optional

from casebook.config import settings
from casebook.db import records
from casebook.db.database import open_db
from casebook.models.session import ApiSkill, AssessmentData, create_empty_skill_entry
from casebook.services.assessment_client import TaxonomyCache
from casebook.services.section_store import DebouncedSectionStore
from casebook.services.skill_cascade import activity_choices, apply_entry_edit, indicator_choices

logger = logging.getLogger(__name__)


class SessionNotFoundError(LookupError):
    pass


class SkillEntryIndexError(LookupError):
    pass


class NoTaxonomyError(RuntimeError):
    """A taxonomy-backed entry was requested before any taxonomy was loaded."""


class SessionEditor:
    def __init__(
        self,
        session_id: int,
        *,
        connect: Callable = open_db,
        session_debounce_ms: Optional[int] = None,
        field_debounce_ms: Optional[int] = None,
    ):
        self.session_id = session_id
        self.assessment: Optional[AssessmentData] = None
        self.email = ""
        self._connect = connect
        self._field_ms = field_debounce_ms or settings.field_debounce_ms
        self.store = DebouncedSectionStore(
            self._persist,
            session_debounce_ms or settings.session_debounce_ms,
            name=f"session:{session_id}",
            failure_message="Failed to save session",
        )
        self._entry_stores: List[DebouncedSectionStore] = []

    # -- loading -------------------------------------------------------------

    async def load(self) -> None:
        async with self._connect() as db:
            session = await records.get_session_detail(db, self.session_id)
            if session is None:
                raise SessionNotFoundError(f"Session {self.session_id} not found")
            entries = await records.list_skill_entries(db, self.session_id)
        self.initialize(session, entries)

    def initialize(self, session: Mapping[str, Any], entries: List[Mapping[str, Any]]) -> bool:
        """First snapshot wins; later snapshots leave the open editor alone."""
        if not self.store.initialize({"session": dict(session), "skill_entries": [dict(e) for e in entries]}):
            return False
        self._entry_stores = [self._new_entry_store(entry) for entry in self.store.data["skill_entries"]]
        return True

    def _new_entry_store(self, entry: Mapping[str, Any]) -> DebouncedSectionStore:
        def _settled(snapshot: Dict[str, Any]) -> None:
            self._entry_settled(store, snapshot)

        store = DebouncedSectionStore(_settled, self._field_ms, name=f"session:{self.session_id}:skill")
        store.initialize(entry)
        return store

    # -- views -----------------------------------------------------------------

    @property
    def session(self) -> Dict[str, Any]:
        return self.store.data.get("session", {})

    @property
    def skill_entries(self) -> List[Dict[str, Any]]:
        """Entries as currently edited, including edits not yet pushed to the session."""
        return [store.data for store in self._entry_stores]

    @property
    def skills(self) -> List[ApiSkill]:
        return list(self.assessment.skills) if self.assessment else []

    def taxonomy_summary(self) -> Dict[str, Any]:
        return {
            "email": self.email,
            "loaded": self.assessment is not None,
            "skills": len(self.skills),
            "expert_activities": self.assessment.expert_activities_count if self.assessment else 0,
        }

    def status(self) -> Dict[str, Any]:
        return {
            **self.store.status(),
            "pending_entries": [i for i, s in enumerate(self._entry_stores) if s.pending],
            "notifications": self.store.drain_notifications(),
        }

    def view(self) -> Dict[str, Any]:
        return {
            "session": self.session,
            "skill_entries": self.skill_entries,
            "taxonomy": self.taxonomy_summary(),
            "status": self.status(),
        }

    def options(self, index: int) -> Dict[str, Any]:
        """Choices offered for the next cascade level of one entry."""
        entry = self._entry_store(index).data
        return {
            "skills": [s.skill_name for s in self.skills],
            "indicators": [i.indicator_name for i in indicator_choices(self.skills, entry.get("skill_name", ""))],
            "activities": [
                a.name
                for a in activity_choices(self.skills, entry.get("skill_name", ""), entry.get("indicator_name", ""))
            ],
        }

    # -- taxonomy --------------------------------------------------------------

    async def load_taxonomy(self, email: str, cache: TaxonomyCache) -> AssessmentData:
        """Replace the taxonomy only once the whole fetch has succeeded."""
        data = await cache.fetch(email)
        self.assessment = data
        self.email = email
        return data

    # -- edits -----------------------------------------------------------------

    def update_session(self, fields: Mapping[str, Any]) -> Dict[str, Any]:
        self.store.update_fields({"session": {**self.session, **fields}})
        return self.session

    def add_skill(self, is_manual: bool = False) -> Dict[str, Any]:
        if not is_manual and not self.skills:
            raise NoTaxonomyError("Load assessment data before adding a skill from the taxonomy")
        entry = create_empty_skill_entry(len(self._entry_stores), is_manual)
        self._entry_stores.append(self._new_entry_store(entry))
        self._push_entries()
        return entry

    def update_skill(self, index: int, updates: Mapping[str, Any]) -> Dict[str, Any]:
        """Apply field edits to one entry; calculated fields follow immediately."""
        store = self._entry_store(index)
        entry = store.data
        for field, value in updates.items():
            entry = apply_entry_edit(entry, field, value, self.skills)
        return store.replace(entry)

    def remove_skill(self, index: int) -> None:
        store = self._entry_store(index)
        store.discard()
        del self._entry_stores[index]
        for order, remaining in enumerate(self._entry_stores):
            remaining.data["skill_order"] = order
        self._push_entries()

    def _entry_store(self, index: int) -> DebouncedSectionStore:
        if not 0 <= index < len(self._entry_stores):
            raise SkillEntryIndexError(f"No skill entry at position {index}")
        return self._entry_stores[index]

    def _entry_settled(self, store: DebouncedSectionStore, snapshot: Dict[str, Any]) -> None:
        if store not in self._entry_stores:
            return
        index = self._entry_stores.index(store)
        entries = list(self.store.data.get("skill_entries", []))
        entries[index] = {**snapshot, "skill_order": index}
        self.store.update_fields({"skill_entries": entries})

    def _push_entries(self) -> None:
        entries = [{**store.data, "skill_order": order} for order, store in enumerate(self._entry_stores)]
        self.store.update_fields({"skill_entries": entries})

    # -- persistence -------------------------------------------------------------

    async def _persist(self, snapshot: Dict[str, Any]) -> None:
        async with self._connect() as db:
            await records.update_session_detail(db, self.session_id, snapshot["session"])
            await records.replace_skill_entries(db, self.session_id, snapshot["skill_entries"])

    async def save(self) -> bool:
        """Save now: settle pending entry edits, then write the session."""
        for store in self._entry_stores:
            if store.pending:
                await store.flush()
        return await self.store.flush()

    async def close(self, flush_pending: bool = False) -> None:
        if flush_pending:
            for store in self._entry_stores:
                if store.pending:
                    await store.flush()
        for store in self._entry_stores:
            await store.close()
        await self.store.close(flush_pending=flush_pending)
