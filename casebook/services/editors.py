"""Open editing views, keyed by case slug and session id.

An editor lives from the first request that touches its case or session
until the view is closed (or the server shuts down). Closing a view cancels
timers that have not fired yet; writes already running finish. Shutdown
flushes pending timers instead so no edit is lost on a clean stop.
"""

import asyncio
import logging
from typing import Callable, Dict, Optional

from fastapi import Request

from casebook.db.database import open_db
from casebook.services.assessment_client import TaxonomyCache
from casebook.services.case_record import CaseEditor, load_case
from casebook.services.session_editor import SessionEditor

logger = logging.getLogger(__name__)


class EditorRegistry:
    def __init__(self, connect: Callable = open_db, taxonomy_cache: Optional[TaxonomyCache] = None):
        self._connect = connect
        self.cases: Dict[str, CaseEditor] = {}
        self.sessions: Dict[int, SessionEditor] = {}
        self._session_locks: Dict[int, asyncio.Lock] = {}
        self.taxonomy = taxonomy_cache or TaxonomyCache()

    async def open_case(self, db, case_slug: str) -> CaseEditor:
        """Return the open editor for ``case_slug``, loading it on first use.

        The loaded snapshot only seeds stores that have not synced yet, so an
        open editor's local edits are never replaced by a reload.
        """
        case_view = await load_case(db, case_slug)
        editor = self.cases.get(case_slug)
        if editor is None:
            editor = CaseEditor(case_view["case_record_id"], connect=self._connect)
            self.cases[case_slug] = editor
            logger.info("Opened case editor for %s", case_slug)
        editor.initialize(case_view)
        return editor

    async def open_session(self, session_id: int) -> SessionEditor:
        """Return the one editor for ``session_id``, loading it on first use.

        Concurrent first requests wait on the same load instead of each
        building an editor of their own.
        """
        lock = self._session_locks.setdefault(session_id, asyncio.Lock())
        async with lock:
            editor = self.sessions.get(session_id)
            if editor is None:
                editor = SessionEditor(session_id, connect=self._connect)
                await editor.load()
                self.sessions[session_id] = editor
                logger.info("Opened session editor for session %d", session_id)
        return editor

    async def close_case(self, case_slug: str) -> bool:
        editor = self.cases.pop(case_slug, None)
        if editor is None:
            return False
        await editor.close()
        return True

    async def close_session(self, session_id: int) -> bool:
        lock = self._session_locks.get(session_id)
        if lock is not None and not lock.locked():
            del self._session_locks[session_id]
        editor = self.sessions.pop(session_id, None)
        if editor is None:
            return False
        await editor.close()
        return True

    async def close_all(self) -> None:
        logger.info(
            "Closing %d case editors and %d session editors",
            len(self.cases), len(self.sessions),
        )
        while self.cases:
            _, editor = self.cases.popitem()
            await editor.close(flush_pending=True)
        while self.sessions:
            _, editor = self.sessions.popitem()
            await editor.close(flush_pending=True)


def get_editors(request: Request) -> EditorRegistry:
    """FastAPI dependency: the registry created by the app lifespan."""
    return request.app.state.editors
