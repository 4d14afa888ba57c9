"""
OpenAgency - Shared memory.

One :class:`SharedMemory` exists per delegation tree. It maps association
names to remembered text, persists the whole map to ``<tree>.mem`` on every
change, and is rendered into the instructions of every agent in the tree.
External edits to the file are picked up by a polling watch.
"""

import asyncio
import json
import logging
import os
import threading
from pathlib import Path
from typing import Any, Optional

from .capabilities import Capability, Parameter
from .events import EventBus, EventSink, EventType
from .exceptions import RunCancelledError
from .scheduling import CancellationToken, Scheduler

logger = logging.getLogger("openagency.memory")

MEMORY_FILE_SUFFIX = ".mem"
INSTRUCTIONS_HEADER = "# Previous Conversations Memory"


class SharedMemory:
    """File-backed association table shared by a delegation tree.

    Args:
        memory_dir: Directory holding the memory files.
        watch_interval: Seconds between checks for external file changes.
        events: Sink for ``memoryupdated`` and ``problem`` events.
        scheduler: Clock used by the file watch.
    """

    def __init__(
        self,
        memory_dir: str = "agencies",
        watch_interval: float = 5.0,
        events: Optional[EventSink] = None,
        scheduler: Optional[Scheduler] = None,
    ):
        self.memory_dir = Path(memory_dir)
        self.watch_interval = watch_interval
        self.events: EventSink = events if events is not None else EventBus()
        self._scheduler = scheduler or Scheduler()

        self.initialised = False
        self.tree_name: Optional[str] = None
        self.memory: dict[str, str] = {}

        self._lock = threading.RLock()
        self._mtime: Optional[int] = None
        self._watch_task: Optional[asyncio.Task] = None
        self._stop_watch: Optional[CancellationToken] = None

    @property
    def path(self) -> Optional[Path]:
        if self.tree_name is None:
            return None
        return self.memory_dir / f"{self.tree_name}{MEMORY_FILE_SUFFIX}"

    async def init(self, tree_name: str) -> None:
        """Load (creating if needed) the memory file and start watching it.

        Calling init on an initialised instance does nothing.
        """
        if self.initialised:
            return

        self.tree_name = tree_name
        path = self.path
        path.parent.mkdir(parents=True, exist_ok=True)
        if not path.exists():
            path.write_text(json.dumps({"memory": {}}), encoding="utf-8")

        self.load()
        self._mtime = self._stat_mtime()

        self._stop_watch = CancellationToken()
        self._watch_task = asyncio.get_running_loop().create_task(self._watch(self._stop_watch))

        self.initialised = True

    async def cleanup(self) -> None:
        """Stop watching and forget the in-memory contents."""
        if self._stop_watch is not None:
            self._stop_watch.cancel("memory cleanup")
        if self._watch_task is not None:
            try:
                await self._watch_task
            except asyncio.CancelledError:
                pass
            self._watch_task = None
        self._stop_watch = None

        with self._lock:
            self.initialised = False
            self.memory = {}
            self.tree_name = None
            self._mtime = None

    def to_instructions(self) -> str:
        """Render all associations as a bullet list for agent instructions.

        Returns an empty string when nothing is remembered.
        """
        with self._lock:
            if not self.memory:
                return ""
            lines = [f"* {key} => {self.memory[key]}" for key in sorted(self.memory)]
        return "\n" + INSTRUCTIONS_HEADER + "\n" + "\n".join(lines) + "\n"

    def get(self) -> str:
        """Return the memory document as a JSON string."""
        with self._lock:
            return json.dumps({"memory": self.memory})

    def snapshot(self) -> dict[str, str]:
        with self._lock:
            return dict(self.memory)

    def set(self, association: str, memory: Optional[str]) -> None:
        """Remember ``memory`` under ``association``; empty text forgets it."""
        with self._lock:
            if not memory:
                self.memory.pop(association, None)
            else:
                self.memory[association] = memory
            self.save()
            current = dict(self.memory)

        self._publish_updated(current)

    def load(self) -> dict[str, str]:
        """Replace the in-memory map with the file contents.

        An unreadable or malformed file loads as an empty map.
        """
        with self._lock:
            try:
                document = json.loads(self.path.read_text(encoding="utf-8"))
                loaded = document.get("memory") or {}
                if not isinstance(loaded, dict):
                    raise ValueError("'memory' is not an object")
                self.memory = {str(k): str(v) for k, v in loaded.items() if v}
            except (OSError, ValueError, AttributeError, TypeError) as e:
                logger.warning("Could not load memory file %s: %s", self.path, e)
                self.memory = {}
            return self.memory

    def save(self) -> None:
        """Rewrite the memory file with the full map."""
        with self._lock:
            if self.path is None:
                logger.warning("Memory is not initialised, change kept in memory only")
                return
            try:
                self.path.write_text(self.get(), encoding="utf-8")
                self._mtime = self._stat_mtime()
            except OSError as e:
                logger.error("Could not save memory file %s: %s", self.path, e)
                self.events.publish(
                    EventType.PROBLEM,
                    {
                        "message": f"{self.tree_name} memory couldn't be saved: {e}",
                        "name": self.tree_name,
                        "type": "Memory",
                    },
                )

    def check_for_changes(self) -> bool:
        """Reload if the file was modified by someone else.

        Returns True when a reload happened.
        """
        with self._lock:
            if self.path is None:
                return False
            mtime = self._stat_mtime()
            if mtime is None or mtime == self._mtime:
                return False
            self._mtime = mtime
            self.load()
            current = dict(self.memory)

        self._publish_updated(current)
        return True

    async def _watch(self, stop: CancellationToken) -> None:
        while True:
            try:
                await self._scheduler.sleep(self.watch_interval, stop)
            except RunCancelledError:
                return
            try:
                self.check_for_changes()
            except Exception:
                logger.exception("Memory watch failed for %s", self.path)

    def _stat_mtime(self) -> Optional[int]:
        try:
            return os.stat(self.path).st_mtime_ns
        except (OSError, TypeError):
            return None

    def _publish_updated(self, current: dict[str, str]) -> None:
        self.events.publish(
            EventType.MEMORY_UPDATED,
            {
                "message": f"{self.tree_name} memory updated.",
                "name": self.tree_name,
                "type": "Memory",
                "memory": current,
            },
        )


REMEMBER_CAPABILITY_NAME = "remember"


class RememberCapability(Capability):
    """Remembers or forgets an association in the tree's shared memory."""

    description = (
        "This tool remembers information for future reference, or forgets "
        "previously remembered information."
    )

    def __init__(self, events: Optional[EventSink] = None):
        super().__init__(
            REMEMBER_CAPABILITY_NAME,
            parameters={
                "association": Parameter(
                    "association",
                    description=(
                        "The association to remember the memory by, "
                        "or to forget the memory of."
                    ),
                    required=True,
                ),
                "memory": Parameter(
                    "memory",
                    description=(
                        "Text to memorise. If an empty string is passed, "
                        "associated memory, if any, is forgotten."
                    ),
                    required=True,
                ),
            },
            events=events,
        )

    async def execute(self, params: dict[str, Any]) -> Any:
        association = params.get("association")
        memory = params.get("memory")
        association = association if isinstance(association, str) else ""
        memory = memory if isinstance(memory, str) else ""

        if not association:
            return "Association is required and none was provided, nothing to do."

        owner = self.owner
        if owner is None or owner.memory is None:
            return {"error": "Memory is not available, nothing was remembered."}

        owner.memory.set(association, memory)

        return f"{association} => {memory}"
