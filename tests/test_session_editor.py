"""Tests for the session editor: skill entries, taxonomy and autosave."""

import asyncio
import logging
import sys
from pathlib import Path

import pytest

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from casebook.db import records
from casebook.models.session import ApiActivity, ApiIndicator, ApiSkill, AssessmentData
from casebook.services.assessment_client import AssessmentProviderError
from casebook.services.editors import EditorRegistry
from casebook.services.session_editor import (
    NoTaxonomyError,
    SessionEditor,
    SessionNotFoundError,
    SkillEntryIndexError,
)
from support import connect_to, setup_test_db

SLOW = 10_000


async def _seed_session(db):
    child_id = await records.create_child(db, "Asha Rao", "asha-rao-k3x9q1")
    return await records.create_session_detail(db, child_id, "2026-01-05")


async def _open(db, session_ms=SLOW, field_ms=SLOW):
    session_id = await _seed_session(db)
    editor = SessionEditor(
        session_id,
        connect=connect_to(db),
        session_debounce_ms=session_ms,
        field_debounce_ms=field_ms,
    )
    await editor.load()
    return session_id, editor


def _taxonomy():
    activity = ApiActivity(name="Story circle", f_target_value=4, i_target_value=5, s_target_value=3)
    return AssessmentData(
        success=True,
        skills=[
            ApiSkill(
                skill_name="Communication",
                indicators=[ApiIndicator(indicator_name="Active listening", activities=[activity])],
            )
        ],
        raw_activities_count=3,
        expert_activities_count=1,
    )


class StubCache:
    def __init__(self, data=None, error=None):
        self.data = data
        self.error = error

    async def fetch(self, email):
        if self.error:
            raise self.error
        return self.data


class TestLoad:
    def test_missing_session(self):
        async def scenario():
            db = await setup_test_db()
            try:
                editor = SessionEditor(404, connect=connect_to(db))
                with pytest.raises(SessionNotFoundError):
                    await editor.load()
            finally:
                await db.close()

        asyncio.run(scenario())

    def test_view(self):
        async def scenario():
            db = await setup_test_db()
            try:
                session_id, editor = await _open(db)
                view = editor.view()
                await editor.close()
                return session_id, view
            finally:
                await db.close()

        session_id, view = asyncio.run(scenario())
        assert view["session"]["id"] == session_id
        assert view["session"]["session_no"] == 1
        assert view["skill_entries"] == []
        assert view["taxonomy"]["loaded"] is False
        assert view["status"]["state"] == "synced"


class TestSkillEntries:
    def test_taxonomy_entry_needs_taxonomy(self):
        async def scenario():
            db = await setup_test_db()
            try:
                _, editor = await _open(db)
                with pytest.raises(NoTaxonomyError):
                    editor.add_skill(is_manual=False)
                entry = editor.add_skill(is_manual=True)
                await editor.close()
                return entry
            finally:
                await db.close()

        entry = asyncio.run(scenario())
        assert entry["is_manual"] is True
        assert entry["skill_order"] == 0

    def test_remove_resequences(self):
        async def scenario():
            db = await setup_test_db()
            try:
                session_id, editor = await _open(db)
                for name in ("A", "B", "C"):
                    editor.add_skill(is_manual=True)
                    editor.update_skill(len(editor.skill_entries) - 1, {"skill_name": name})
                editor.remove_skill(1)
                local = [(e["skill_name"], e["skill_order"]) for e in editor.skill_entries]
                await editor.save()
                stored = await records.list_skill_entries(db, session_id)
                await editor.close()
                return local, [(e["skill_name"], e["skill_order"]) for e in stored]
            finally:
                await db.close()

        local, stored = asyncio.run(scenario())
        assert local == [("A", 0), ("C", 1)]
        assert stored == [("A", 0), ("C", 1)]

    def test_bad_index(self):
        async def scenario():
            db = await setup_test_db()
            try:
                _, editor = await _open(db)
                with pytest.raises(SkillEntryIndexError):
                    editor.update_skill(0, {"fist_remarks": "x"})
                with pytest.raises(SkillEntryIndexError):
                    editor.remove_skill(3)
                await editor.close()
            finally:
                await db.close()

        asyncio.run(scenario())

    def test_entry_edits_settle_into_session(self):
        async def scenario():
            db = await setup_test_db()
            try:
                session_id, editor = await _open(db, session_ms=SLOW, field_ms=10)
                editor.add_skill(is_manual=True)
                editor.update_skill(0, {"fist_remarks": "calm today"})
                assert editor.store.data["skill_entries"][0]["fist_remarks"] == ""
                await asyncio.sleep(0.1)
                pushed = editor.store.data["skill_entries"][0]["fist_remarks"]
                pending = editor.store.pending
                before_close = await records.list_skill_entries(db, session_id)
                await editor.close(flush_pending=True)
                after_close = await records.list_skill_entries(db, session_id)
                return pushed, pending, before_close, after_close
            finally:
                await db.close()

        pushed, pending, before_close, after_close = asyncio.run(scenario())
        assert pushed == "calm today"
        assert pending is True
        assert before_close == []
        assert [e["fist_remarks"] for e in after_close] == ["calm today"]

    def test_scores_follow_edits(self):
        async def scenario():
            db = await setup_test_db()
            try:
                session_id, editor = await _open(db)
                editor.assessment = _taxonomy()
                editor.add_skill()
                editor.update_skill(0, {
                    "skill_name": "Communication",
                    "indicator_name": "Active listening",
                    "activity_name": "Story circle",
                    "actual_f_value": 3,
                    "actual_i_value": 4,
                    "actual_s_value": 2,
                })
                options = editor.options(0)
                await editor.save()
                stored = await records.list_skill_entries(db, session_id)
                await editor.close()
                return options, stored
            finally:
                await db.close()

        options, stored = asyncio.run(scenario())
        assert options == {
            "skills": ["Communication"],
            "indicators": ["Active listening"],
            "activities": ["Story circle"],
        }
        assert stored[0]["target_cutoff"] == pytest.approx(61.2)
        assert stored[0]["actual_cutoff"] == pytest.approx(37.6)


class TestSessionFields:
    def test_update_and_save(self):
        async def scenario():
            db = await setup_test_db()
            try:
                session_id, editor = await _open(db)
                editor.update_session({"attendance": "late", "session_link_url": "https://meet.example/abc"})
                assert await editor.save() is True
                stored = await records.get_session_detail(db, session_id)
                await editor.close()
                return stored
            finally:
                await db.close()

        stored = asyncio.run(scenario())
        assert stored["attendance"] == "late"
        assert stored["session_link_url"] == "https://meet.example/abc"

    def test_close_without_flush_drops_pending(self):
        async def scenario():
            db = await setup_test_db()
            try:
                session_id, editor = await _open(db)
                editor.update_session({"attendance": "absent"})
                await editor.close()
                return await records.get_session_detail(db, session_id)
            finally:
                await db.close()

        assert asyncio.run(scenario())["attendance"] is None


class TestTaxonomy:
    def test_load_taxonomy(self):
        async def scenario():
            db = await setup_test_db()
            try:
                _, editor = await _open(db)
                await editor.load_taxonomy("parent@example.com", StubCache(data=_taxonomy()))
                summary = editor.taxonomy_summary()
                await editor.close()
                return summary
            finally:
                await db.close()

        assert asyncio.run(scenario()) == {
            "email": "parent@example.com",
            "loaded": True,
            "skills": 1,
            "expert_activities": 1,
        }

    def test_failed_fetch_keeps_previous_taxonomy(self):
        async def scenario():
            db = await setup_test_db()
            try:
                _, editor = await _open(db)
                await editor.load_taxonomy("parent@example.com", StubCache(data=_taxonomy()))
                failing = StubCache(error=AssessmentProviderError("Failed to fetch assessment data", 503))
                with pytest.raises(AssessmentProviderError):
                    await editor.load_taxonomy("other@example.com", failing)
                summary = editor.taxonomy_summary()
                await editor.close()
                return summary
            finally:
                await db.close()

        summary = asyncio.run(scenario())
        assert summary["email"] == "parent@example.com"
        assert summary["skills"] == 1


class TestRegistry:
    def test_concurrent_opens_share_one_editor(self):
        async def scenario():
            db = await setup_test_db()
            try:
                session_id = await _seed_session(db)
                registry = EditorRegistry(connect=connect_to(db))
                first, second = await asyncio.gather(
                    registry.open_session(session_id),
                    registry.open_session(session_id),
                )
                same = first is second
                registered = registry.sessions[session_id] is first
                await registry.close_all()
                return same, registered
            finally:
                await db.close()

        same, registered = asyncio.run(scenario())
        assert same is True
        assert registered is True

    def test_failed_open_is_not_registered(self):
        async def scenario():
            db = await setup_test_db()
            try:
                registry = EditorRegistry(connect=connect_to(db))
                results = await asyncio.gather(
                    registry.open_session(404),
                    registry.open_session(404),
                    return_exceptions=True,
                )
                return results, dict(registry.sessions)
            finally:
                await db.close()

        results, sessions = asyncio.run(scenario())
        assert all(isinstance(r, SessionNotFoundError) for r in results)
        assert sessions == {}


class TestRemovedEntries:
    def test_removing_an_edited_entry_is_quiet(self, caplog):
        async def scenario():
            db = await setup_test_db()
            try:
                session_id, editor = await _open(db)
                editor.add_skill(is_manual=True)
                editor.update_skill(0, {"fist_remarks": "half typed"})
                removed = editor._entry_store(0)
                with caplog.at_level(logging.DEBUG, logger="casebook.services.section_store"):
                    editor.remove_skill(0)
                await editor.save()
                stored = await records.list_skill_entries(db, session_id)
                await editor.close()
                return removed, stored
            finally:
                await db.close()

        removed, stored = asyncio.run(scenario())
        assert removed.closed is True
        assert not removed.pending
        assert stored == []
        assert [r for r in caplog.records if r.levelno >= logging.WARNING] == []
