"""Fire-and-forget event emission to an observability server.

Events are POSTed as JSON envelopes to ``<events_url>/events/<name>``. Emission
never blocks the caller and never raises into it: failures are logged at debug
level and dropped.

Usage:
    emitter = EventEmitter(config.events_url)
    emitter.emit("xero-reconcile-completed", {"executed": True})
    await emitter.aclose()
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Set

import aiohttp

from core.observability.logging import get_correlation_context, get_logger

logger = get_logger(__name__)

EMIT_TIMEOUT_SECONDS = 2.0


class EventEmitter:
    """Best-effort event sink. Disabled when no URL is configured."""

    def __init__(self, url: Optional[str] = None):
        self.url = url.rstrip("/") if url else None
        self._tasks: Set[asyncio.Task] = set()

    @property
    def enabled(self) -> bool:
        return self.url is not None

    def build_envelope(self, name: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        body = dict(payload)
        run_id = get_correlation_context().run_id
        if run_id:
            body["runId"] = run_id
        return {
            "name": name,
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "payload": body,
        }

    def emit(self, name: str, payload: Dict[str, Any]) -> None:
        """Schedule an event POST; a no-op without a URL or a running loop."""
        if not self.enabled:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        envelope = self.build_envelope(name, payload)
        task = loop.create_task(self._post(name, envelope))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _post(self, name: str, envelope: Dict[str, Any]) -> None:
        timeout = aiohttp.ClientTimeout(total=EMIT_TIMEOUT_SECONDS)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(f"{self.url}/events/{name}", json=envelope) as response:
                    await response.read()
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            logger.debug(f"Event {name} not delivered: {e}")

    async def aclose(self) -> None:
        """Wait briefly for in-flight events so they are not cut off at exit."""
        if not self._tasks:
            return
        await asyncio.wait(set(self._tasks), timeout=EMIT_TIMEOUT_SECONDS)


class NullEmitter(EventEmitter):
    """Emitter that drops everything."""

    def __init__(self):
        super().__init__(None)


class RecordingEmitter(EventEmitter):
    """Emitter that keeps events in memory (for testing)."""

    def __init__(self):
        super().__init__(None)
        self.events = []

    def emit(self, name: str, payload: Dict[str, Any]) -> None:
        self.events.append((name, dict(payload)))

    def names(self):
        return [name for name, _ in self.events]
