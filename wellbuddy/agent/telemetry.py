import asyncio
import time
from typing import Any, Dict, List, Optional

from .utils.nanoid import nanoid

MAX_TRACES = 100


def _now_ms() -> int:
    return int(time.time() * 1000)


class Telemetry:
    """Bounded, newest-first record of per-turn traces."""

    def __init__(self, max_traces: int = MAX_TRACES) -> None:
        self.max_traces = max_traces
        self._lock = asyncio.Lock()
        self._traces: List[Dict[str, Any]] = []

    def _save(self, traces: List[Dict[str, Any]]) -> None:
        self._traces = sorted(traces, key=lambda trace: trace["ts"], reverse=True)[: self.max_traces]

    async def record(self, params: Dict[str, Any]) -> str:
        async with self._lock:
            trace_id = nanoid("trc")
            started_at = params.get("startedAt", _now_ms())
            trace = {
                "id": trace_id,
                "ts": _now_ms(),
                "userId": params["userId"],
                "intentLabel": params["intentLabel"],
                "intentConfidence": params["intentConfidence"],
                "retrieval": params.get("retrieval", {}),
                "responseType": params.get("responseType"),
                "confidence": params.get("confidence"),
                "fallbacks": params.get("fallbacks", []),
                "droppedFields": params.get("droppedFields", []),
                "actions": params.get("actions", []),
                "latencyMs": _now_ms() - started_at,
                "error": params.get("error"),
            }
            self._save([trace, *self._traces])
            return trace_id

    async def update(self, trace_id: str, patch: Dict[str, Any]) -> None:
        async with self._lock:
            self._save([{**trace, **patch} if trace.get("id") == trace_id else trace for trace in self._traces])

    async def get(self, trace_id: str) -> Optional[Dict[str, Any]]:
        async with self._lock:
            for trace in self._traces:
                if trace.get("id") == trace_id:
                    return dict(trace)
            return None

    async def list(self, user_id: Optional[str] = None) -> List[Dict[str, Any]]:
        async with self._lock:
            return [dict(trace) for trace in self._traces if user_id is None or trace.get("userId") == user_id]
