"""File watcher that debounces change bursts into sync runs.

This module observes the memory and session directories and coalesces
bursts of change events into a single sync after a quiet period.
"""

import asyncio
from collections.abc import Awaitable
from pathlib import Path
from typing import Callable

from loguru import logger
from watchfiles import Change, awatch

_STOP = object()


class SyncWatcher:
    """Debouncing file watcher.

    Change events are queued to a single actor task that exclusively owns the
    pending path set and the debounce deadline. Every event re-arms the
    deadline; when it expires the actor drains the pending set and awaits one
    sync. Events arriving during that sync are queued and start the next
    debounce window.
    """

    def __init__(
        self,
        watch_paths: list[str | Path],
        sync_callback: Callable[[set[str]], Awaitable[object]],
        debounce_ms: int = 2000,
        watch_filter: Callable[[Change, str], bool] | None = None,
        on_change: Callable[[str], None] | None = None,
        recursive: bool = True,
    ):
        """
        Initialize the watcher

        Args:
            watch_paths: Directories to observe
            sync_callback: Awaited with the drained pending paths when the debounce expires
            debounce_ms: Quiet period in milliseconds before a sync fires
            watch_filter: Decides which (change, path) events count; all when omitted
            on_change: Called for every accepted event, e.g. to mark the index dirty
            recursive: Whether to watch directories recursively
        """
        self.watch_paths: list[str] = [str(p) for p in watch_paths]
        self.sync_callback = sync_callback
        self.debounce_ms: int = debounce_ms
        self._watch_filter = watch_filter
        self.on_change = on_change
        self.recursive: bool = recursive

        self._queue: asyncio.Queue | None = None
        self._stop_event: asyncio.Event | None = None
        self._actor_task: asyncio.Task | None = None
        self._watch_task: asyncio.Task | None = None
        self._running = False
        self.sync_count = 0

    def is_running(self) -> bool:
        """Check if the watcher is running"""
        return self._running

    def watch_filter(self, change: Change, path: str) -> bool:
        """Filter function for file watching."""
        if self._watch_filter is None:
            return True
        return self._watch_filter(change, path)

    async def start(self, observe: bool = True):
        """Start the debounce actor and, when ``observe`` is set, the file system watch loop."""
        if self._running:
            return

        self._running = True
        self._queue = asyncio.Queue()
        self._stop_event = asyncio.Event()
        self._actor_task = asyncio.create_task(self._actor_loop())
        if observe:
            self._watch_task = asyncio.create_task(self._watch_loop())
        logger.info(f"Started watching: {self.watch_paths} (debounce {self.debounce_ms} ms)")

    async def close(self):
        """Stop watching; pending changes are dropped."""
        if not self._running:
            return

        self._stop_event.set()
        self._queue.put_nowait(_STOP)
        if self._watch_task:
            await self._watch_task
        await self._actor_task
        self._watch_task = None
        self._actor_task = None
        self._running = False
        logger.info("Stopped watching")

    def notify(self, change: Change, path: str) -> bool:
        """Feed one change event to the debounce actor.

        Returns:
            Whether the event passed the filter and was queued
        """
        if not self._running or not self.watch_filter(change, path):
            return False
        if self.on_change:
            self.on_change(path)
        self._queue.put_nowait((change, path))
        return True

    async def trigger_sync(self):
        """Run a sync now, bypassing the debounce and the pending set."""
        return await self._run_sync(set(), reason="manual")

    async def _watch_loop(self):
        """Core monitoring loop"""
        if not self.watch_paths:
            logger.warning("No watch paths specified")
            return

        try:
            async for changes in awatch(
                *self.watch_paths,
                watch_filter=self.watch_filter,
                recursive=self.recursive,
                stop_event=self._stop_event,
            ):
                if self._stop_event.is_set():
                    break
                for change, path in changes:
                    self.notify(change, path)
        except FileNotFoundError as e:
            # Watch path was deleted, this is expected during cleanup
            logger.debug(f"Watch path no longer exists: {e}")
        except Exception as e:
            logger.error(f"Error in watch loop: {e}")

    async def _actor_loop(self):
        """Own the pending set and deadline; fire one sync per quiet period."""
        loop = asyncio.get_running_loop()
        pending: set[str] = set()
        deadline: float | None = None

        while True:
            timeout = None if deadline is None else max(0.0, deadline - loop.time())
            try:
                message = await asyncio.wait_for(self._queue.get(), timeout=timeout)
            except asyncio.TimeoutError:
                batch, pending, deadline = pending, set(), None
                await self._run_sync(batch, reason="watch")
                continue

            if message is _STOP:
                break

            _, path = message
            pending.add(path)
            deadline = loop.time() + self.debounce_ms / 1000

    async def _run_sync(self, paths: set[str], reason: str):
        logger.info(f"[{self.__class__.__name__}] {reason} sync for {len(paths)} changed paths")
        self.sync_count += 1
        try:
            return await self.sync_callback(paths)
        except Exception as e:
            # A failed background sync must not stop the watcher
            logger.error(f"{reason} sync failed: {e}")
            if reason == "manual":
                raise
            return None
