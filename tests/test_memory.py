"""
Tests for the file-backed shared memory and the remember capability.
"""

import json
import os
from types import SimpleNamespace

import pytest
import pytest_asyncio

from openagency.events import EventBus, EventType
from openagency.memory import RememberCapability, SharedMemory


@pytest_asyncio.fixture
async def memory(tmp_path):
    bus = EventBus(history=50)
    shared = SharedMemory(memory_dir=str(tmp_path), events=bus)
    await shared.init("Support")
    yield shared
    await shared.cleanup()


def _write_externally(path, document):
    stat = os.stat(path)
    path.write_text(json.dumps(document), encoding="utf-8")
    # Make sure the change is visible even on coarse mtime filesystems.
    os.utime(path, ns=(stat.st_atime_ns, stat.st_mtime_ns + 1_000_000_000))


class TestSharedMemory:
    @pytest.mark.asyncio
    async def test_init_creates_empty_file(self, tmp_path):
        shared = SharedMemory(memory_dir=str(tmp_path / "nested"))
        await shared.init("Support")
        try:
            assert shared.initialised
            assert json.loads(shared.path.read_text()) == {"memory": {}}
            assert shared.to_instructions() == ""
        finally:
            await shared.cleanup()

        assert not shared.initialised
        assert shared.path is None

    @pytest.mark.asyncio
    async def test_init_is_idempotent(self, memory):
        memory.set("k", "v")
        await memory.init("Other")

        assert memory.tree_name == "Support"
        assert memory.snapshot() == {"k": "v"}

    @pytest.mark.asyncio
    async def test_set_persists_and_reloads(self, memory, tmp_path):
        memory.set("user", "Alice")

        assert json.loads((tmp_path / "Support.mem").read_text()) == {"memory": {"user": "Alice"}}

        reloaded = SharedMemory(memory_dir=str(tmp_path))
        await reloaded.init("Support")
        try:
            assert reloaded.snapshot() == {"user": "Alice"}
        finally:
            await reloaded.cleanup()

    @pytest.mark.asyncio
    async def test_empty_text_forgets(self, memory):
        memory.set("user", "Alice")
        memory.set("user", "")

        assert memory.snapshot() == {}
        assert json.loads(memory.get()) == {"memory": {}}

    @pytest.mark.asyncio
    async def test_set_publishes_full_map(self, memory):
        memory.set("a", "1")
        memory.set("b", "2")

        updates = [e for e in memory.events.history if e.type == EventType.MEMORY_UPDATED.value]
        assert updates[-1].data["memory"] == {"a": "1", "b": "2"}
        assert updates[-1].name == "Support"

    @pytest.mark.asyncio
    async def test_instructions_rendering(self, memory):
        memory.set("zeta", "last")
        memory.set("alpha", "first")

        assert memory.to_instructions() == (
            "\n# Previous Conversations Memory\n* alpha => first\n* zeta => last\n"
        )

    @pytest.mark.asyncio
    async def test_external_change_is_picked_up(self, memory):
        _write_externally(memory.path, {"memory": {"edited": "by hand"}})

        assert memory.check_for_changes() is True
        assert memory.snapshot() == {"edited": "by hand"}
        assert memory.check_for_changes() is False

        updates = [e for e in memory.events.history if e.type == EventType.MEMORY_UPDATED.value]
        assert updates[-1].data["memory"] == {"edited": "by hand"}

    @pytest.mark.asyncio
    async def test_own_writes_do_not_trigger_reload(self, memory):
        memory.set("k", "v")
        assert memory.check_for_changes() is False

    @pytest.mark.asyncio
    async def test_malformed_file_loads_empty(self, tmp_path):
        (tmp_path / "Broken.mem").write_text("{not json", encoding="utf-8")
        shared = SharedMemory(memory_dir=str(tmp_path))
        await shared.init("Broken")
        try:
            assert shared.snapshot() == {}
        finally:
            await shared.cleanup()

    @pytest.mark.asyncio
    async def test_empty_values_are_dropped_on_load(self, tmp_path):
        (tmp_path / "Sparse.mem").write_text(
            json.dumps({"memory": {"kept": "yes", "dropped": ""}}), encoding="utf-8"
        )
        shared = SharedMemory(memory_dir=str(tmp_path))
        await shared.init("Sparse")
        try:
            assert shared.snapshot() == {"kept": "yes"}
        finally:
            await shared.cleanup()

    @pytest.mark.asyncio
    async def test_save_failure_is_reported(self, memory, tmp_path):
        memory.path.unlink()
        memory.path.mkdir()

        memory.set("k", "v")

        problems = [e for e in memory.events.history if e.type == EventType.PROBLEM.value]
        assert len(problems) == 1
        assert memory.snapshot() == {"k": "v"}


class TestRememberCapability:
    @pytest.mark.asyncio
    async def test_remember_and_forget(self, memory):
        capability = RememberCapability()
        capability.owner_id = "agent-1"
        capability._tree = SimpleNamespace(get=lambda agent_id: SimpleNamespace(memory=memory))

        assert await capability.invoke({"association": "pet", "memory": "cat"}) == "pet => cat"
        assert memory.snapshot() == {"pet": "cat"}

        assert await capability.invoke({"association": "pet", "memory": ""}) == "pet => "
        assert memory.snapshot() == {}

    @pytest.mark.asyncio
    async def test_empty_association(self):
        capability = RememberCapability()

        result = await capability.execute({"association": "", "memory": "x"})

        assert result == "Association is required and none was provided, nothing to do."

    @pytest.mark.asyncio
    async def test_without_owner(self):
        result = await RememberCapability().execute({"association": "a", "memory": "b"})
        assert result == {"error": "Memory is not available, nothing was remembered."}

    def test_schema(self):
        described = RememberCapability().describe()
        assert described["name"] == "remember"
        assert described["parameters"]["required"] == ["association", "memory"]
