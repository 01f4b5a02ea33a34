"""
Progress Channel

Single-writer (orchestrator) / single-reader (SSE response) queue of typed
progress events. Stages only move forward, the terminal event (`complete` or
`error`) is delivered exactly once, and once the transport is gone further
emits are dropped.

Wire format per event:
    event: <name>
    data: <json>
    <blank line>
followed by a final ``data: [DONE]`` unit.
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, Optional

logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"

# Stage order; events sharing a rank may repeat and interleave.
STAGE_RANK = {
    "connected": 0,
    "validation": 1,
    "upload": 2,
    "plant_id": 3,
    "plant_identified": 4,
    "disease_check": 5,
    "disease_found": 6,
    "treatments": 6,
    "treatments_chemical": 6,
    "treatments_biological": 6,
    "treatments_cultural": 6,
    "ai_advice": 6,
    "care": 7,
    "saving": 8,
    "complete": 9,
    "error": 9,
}
TERMINAL_EVENTS = {"complete", "error"}


def format_sse(event: str, data: Dict[str, Any]) -> str:
    payload = json.dumps(data, ensure_ascii=False, default=str)
    return f"event: {event}\ndata: {payload}\n\n"


def format_done() -> str:
    return f"data: {DONE_SENTINEL}\n\n"


@dataclass(frozen=True)
class ProgressEvent:
    sequence: int
    event: str
    data: Dict[str, Any]

    def to_sse(self) -> str:
        return format_sse(self.event, self.data)


class NullProgress:
    """Progress sink for the synchronous endpoint"""

    def emit(self, event: str, data: Optional[Dict[str, Any]] = None) -> bool:
        return False


class ProgressChannel:

    def __init__(self):
        self._queue: "asyncio.Queue[Optional[ProgressEvent]]" = asyncio.Queue()
        self._sequence = 0
        self._rank = -1
        self._terminated = False
        self._closed = False
        self.emit("connected", {"status": "connected"})

    @property
    def is_open(self) -> bool:
        return not (self._closed or self._terminated)

    def emit(self, event: str, data: Optional[Dict[str, Any]] = None) -> bool:
        """Queue a progress event. Returns False when it was dropped."""
        if event in TERMINAL_EVENTS:
            raise ValueError(f"'{event}' is terminal, use complete()/fail()")
        return self._put(event, data)

    def complete(self, result: Dict[str, Any]) -> bool:
        return self._finish("complete", {
            "type": "complete",
            "message": "Phân tích hoàn tất!",
            "result": result,
        })

    def fail(self, message: str, code: int = 500) -> bool:
        return self._finish("error", {"error": message, "code": code})

    def close(self):
        """Transport went away. Wakes the reader and drops later events."""
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(None)
        if not self._terminated:
            logger.info("📴 Progress channel closed by client before completion")

    async def events(self) -> AsyncIterator[ProgressEvent]:
        while True:
            item = await self._queue.get()
            if item is None:
                return
            yield item
            if item.event in TERMINAL_EVENTS:
                return

    async def stream(self) -> AsyncIterator[str]:
        """SSE frames, ending with the [DONE] sentinel."""
        async for item in self.events():
            yield item.to_sse()
            if item.event in TERMINAL_EVENTS:
                yield format_done()

    def _finish(self, event: str, data: Dict[str, Any]) -> bool:
        if self._terminated:
            logger.warning(f"Ignoring second terminal event '{event}'")
            return False
        delivered = self._put(event, data)
        self._terminated = True
        return delivered

    def _put(self, event: str, data: Optional[Dict[str, Any]]) -> bool:
        if self._terminated:
            logger.warning(f"Ignoring '{event}' after terminal event")
            return False

        rank = STAGE_RANK.get(event)
        if rank is not None:
            if rank < self._rank and event not in TERMINAL_EVENTS:
                raise ValueError(f"'{event}' cannot follow a later stage")
            self._rank = max(self._rank, rank)

        if self._closed:
            return False

        self._sequence += 1
        payload = dict(data or {})
        payload["timestamp"] = int(time.time() * 1000)
        payload["sequence"] = self._sequence
        self._queue.put_nowait(ProgressEvent(sequence=self._sequence, event=event, data=payload))
        return True
