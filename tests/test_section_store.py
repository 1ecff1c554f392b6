"""Tests for the debounced per-entity autosave store."""

import asyncio

import pytest

from casebook.services.section_store import (
    DebouncedSectionStore,
    StoreClosedError,
    SyncState,
    merge_section_data,
)

DEBOUNCE_MS = 20
SETTLE = 0.1


class Recorder:
    """Save callback that remembers every snapshot it was handed."""

    def __init__(self, fail_times=0):
        self.calls = []
        self.fail_times = fail_times

    async def __call__(self, snapshot):
        self.calls.append(snapshot)
        if self.fail_times:
            self.fail_times -= 1
            raise ConnectionError("network down")


class TestMergeSectionData:
    def test_lists_are_replaced(self):
        existing = {"parental_concerns": ["sleep", "diet"]}
        merged = merge_section_data(existing, {"parental_concerns": ["reading"]})
        assert merged["parental_concerns"] == ["reading"]

    def test_nested_dicts_merge_one_level(self):
        existing = {"ratings": {"creativity": 3, "initiative": 2}}
        merged = merge_section_data(existing, {"ratings": {"creativity": 5}})
        assert merged["ratings"] == {"creativity": 5, "initiative": 2}

    def test_primitives_are_replaced(self):
        merged = merge_section_data({"notes": "old", "city": "Pune"}, {"notes": "new"})
        assert merged == {"notes": "new", "city": "Pune"}

    def test_empty_existing_takes_updates(self):
        assert merge_section_data(None, {"notes": "x"}) == {"notes": "x"}
        assert merge_section_data({}, {"notes": "x"}) == {"notes": "x"}

    def test_dict_over_primitive_replaces(self):
        merged = merge_section_data({"ratings": None}, {"ratings": {"a": 1}})
        assert merged["ratings"] == {"a": 1}


class TestInitialize:
    def test_first_snapshot_seeds_local_data(self):
        store = DebouncedSectionStore(Recorder(), DEBOUNCE_MS)
        assert store.state is SyncState.UNINITIALIZED
        assert store.initialize({"notes": "from storage"}) is True
        assert store.state is SyncState.SYNCED
        assert store.data == {"notes": "from storage"}

    def test_later_snapshots_are_ignored(self):
        store = DebouncedSectionStore(Recorder(), DEBOUNCE_MS)
        store.initialize({"notes": "first"})
        assert store.initialize({"notes": "second"}) is False
        assert store.data == {"notes": "first"}

    def test_local_edit_before_load_is_not_clobbered(self):
        async def scenario():
            store = DebouncedSectionStore(Recorder(), DEBOUNCE_MS)
            store.update_field("notes", "typed first")
            assert store.initialize({"notes": "stale"}) is False
            store.cancel()
            return store.data

        assert asyncio.run(scenario()) == {"notes": "typed first"}

    def test_snapshot_is_copied(self):
        remote = {"ratings": {"a": 1}}
        store = DebouncedSectionStore(Recorder(), DEBOUNCE_MS)
        store.initialize(remote)
        remote["ratings"]["a"] = 9
        assert store.data["ratings"]["a"] == 1


class TestDebounce:
    def test_rapid_edits_coalesce_into_one_write(self):
        async def scenario():
            save = Recorder()
            store = DebouncedSectionStore(save, DEBOUNCE_MS)
            store.initialize({"notes": ""})
            for i in range(10):
                store.update_field("notes", f"draft {i}")
            assert save.calls == []
            assert store.pending
            await asyncio.sleep(SETTLE)
            return save, store

        save, store = asyncio.run(scenario())
        assert save.calls == [{"notes": "draft 9"}]
        assert not store.pending
        assert not store.dirty
        assert store.last_saved_at is not None
        assert store.has_local_changes

    def test_write_carries_data_at_fire_time(self):
        async def scenario():
            save = Recorder()
            store = DebouncedSectionStore(save, DEBOUNCE_MS)
            store.update_fields({"a": 1})
            store.update_fields({"b": 2})
            await asyncio.sleep(SETTLE)
            return save

        assert asyncio.run(scenario()).calls == [{"a": 1, "b": 2}]

    def test_edits_apply_locally_at_once(self):
        async def scenario():
            store = DebouncedSectionStore(Recorder(), DEBOUNCE_MS)
            store.initialize({"ratings": {"a": 1, "b": 2}})
            data = store.merge_fields({"ratings": {"a": 5}})
            store.cancel()
            return data

        assert asyncio.run(scenario()) == {"ratings": {"a": 5, "b": 2}}

    def test_sync_save_callback(self):
        calls = []

        async def scenario():
            store = DebouncedSectionStore(calls.append, DEBOUNCE_MS)
            store.update_field("x", 1)
            await asyncio.sleep(SETTLE)

        asyncio.run(scenario())
        assert calls == [{"x": 1}]

    def test_saved_snapshot_is_isolated_from_later_edits(self):
        async def scenario():
            save = Recorder()
            store = DebouncedSectionStore(save, DEBOUNCE_MS)
            store.update_field("items", ["a"])
            await store.flush()
            store.data["items"].append("b")
            store.cancel()
            return save

        assert asyncio.run(scenario()).calls == [{"items": ["a"]}]


class TestFlushAndCancel:
    def test_flush_writes_immediately(self):
        async def scenario():
            save = Recorder()
            store = DebouncedSectionStore(save, 10_000)
            store.update_field("notes", "now")
            ok = await store.flush()
            return ok, save, store

        ok, save, store = asyncio.run(scenario())
        assert ok is True
        assert save.calls == [{"notes": "now"}]
        assert not store.pending

    def test_cancel_drops_pending_write(self):
        async def scenario():
            save = Recorder()
            store = DebouncedSectionStore(save, DEBOUNCE_MS)
            store.update_field("notes", "lost")
            store.cancel()
            await asyncio.sleep(SETTLE)
            return save, store

        save, store = asyncio.run(scenario())
        assert save.calls == []
        assert store.dirty

    def test_close_lets_running_write_finish(self):
        async def scenario():
            started = asyncio.Event()
            release = asyncio.Event()
            saved = []

            async def slow_save(snapshot):
                started.set()
                await release.wait()
                saved.append(snapshot)

            store = DebouncedSectionStore(slow_save, DEBOUNCE_MS)
            store.update_field("notes", "in flight")
            await started.wait()
            assert store.saving
            closing = asyncio.ensure_future(store.close())
            await asyncio.sleep(0)
            release.set()
            await closing
            return saved, store

        saved, store = asyncio.run(scenario())
        assert saved == [{"notes": "in flight"}]
        assert not store.saving
        assert store.closed

    def test_close_with_flush_writes_pending_edits(self):
        async def scenario():
            save = Recorder()
            store = DebouncedSectionStore(save, 10_000)
            store.update_field("notes", "keep me")
            await store.close(flush_pending=True)
            return save

        assert asyncio.run(scenario()).calls == [{"notes": "keep me"}]

    def test_edit_after_close_is_rejected(self):
        async def scenario():
            store = DebouncedSectionStore(Recorder(), DEBOUNCE_MS)
            await store.close()
            with pytest.raises(StoreClosedError):
                store.update_field("notes", "too late")

        asyncio.run(scenario())


class TestFailures:
    def test_failed_save_keeps_local_data_and_notifies(self):
        async def scenario():
            save = Recorder(fail_times=1)
            store = DebouncedSectionStore(save, DEBOUNCE_MS, failure_message="Failed to save section")
            store.initialize({"notes": ""})
            store.update_field("notes", "important")
            await asyncio.sleep(SETTLE)
            return save, store

        save, store = asyncio.run(scenario())
        assert len(save.calls) == 1
        assert store.data == {"notes": "important"}
        assert store.dirty
        assert store.last_error == "network down"
        assert store.last_saved_at is None

        notes = store.drain_notifications()
        assert [n["message"] for n in notes] == ["Failed to save section"]
        assert notes[0]["level"] == "error"
        assert store.drain_notifications() == []

    def test_no_automatic_retry(self):
        async def scenario():
            save = Recorder(fail_times=1)
            store = DebouncedSectionStore(save, DEBOUNCE_MS)
            store.update_field("notes", "x")
            await asyncio.sleep(SETTLE * 3)
            return save

        assert len(asyncio.run(scenario()).calls) == 1

    def test_next_flush_writes_again(self):
        async def scenario():
            save = Recorder(fail_times=1)
            store = DebouncedSectionStore(save, DEBOUNCE_MS)
            store.update_field("notes", "x")
            await asyncio.sleep(SETTLE)
            ok = await store.flush()
            return ok, save, store

        ok, save, store = asyncio.run(scenario())
        assert ok is True
        assert len(save.calls) == 2
        assert not store.dirty
        assert store.last_error is None


class TestStatus:
    def test_status_shape(self):
        store = DebouncedSectionStore(Recorder(), DEBOUNCE_MS)
        status = store.status()
        assert status == {
            "state": "uninitialized",
            "dirty": False,
            "pending": False,
            "saving": False,
            "has_local_changes": False,
            "last_saved_at": None,
            "last_error": None,
        }
