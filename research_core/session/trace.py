"""会话调试 trace 记录器。"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, is_dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from research_core.domain.exceptions import BusinessError


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class TraceEntry:
    kind: str
    timestamp: str
    raw_payload: Any
    derived_event: Optional[Any] = None


class DebugTraceRecorder:
    """只追加的调试日志：记录每个原始帧与派生出的状态迁移。

    记录永远不会影响控制流：无法序列化的条目会带上错误标记保存，
    既不丢弃也不抛出。
    """

    def __init__(self) -> None:
        self._entries: List[TraceEntry] = []

    @property
    def entries(self) -> List[TraceEntry]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def record(self, kind: str, raw_payload: Any = None, derived_event: Any = None) -> TraceEntry:
        entry = TraceEntry(
            kind=kind,
            timestamp=_utcnow(),
            raw_payload=_to_jsonable(raw_payload),
            derived_event=None if derived_event is None else _to_jsonable(derived_event),
        )
        self._entries.append(entry)
        return entry

    def reset(self) -> None:
        self._entries = []

    def export(self, session_snapshot: Optional[Dict[str, Any]] = None) -> str:
        """把完整 trace 与当前会话的瞬态状态（步骤、状态）合并导出为 JSON。"""

        doc = {
            "exported_at": _utcnow(),
            "session": _to_jsonable(session_snapshot or {}),
            "trace": [asdict(e) for e in self._entries],
        }
        return json.dumps(doc, ensure_ascii=False, indent=2)

    def write_export(
        self,
        directory: str | Path,
        conversation_id: str,
        session_snapshot: Optional[Dict[str, Any]] = None,
    ) -> Path:
        out_dir = Path(directory)
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        path = out_dir / f"debug-trace-{conversation_id}-{stamp}.json"
        try:
            out_dir.mkdir(parents=True, exist_ok=True)
            path.write_text(self.export(session_snapshot), encoding="utf-8")
        except OSError as e:
            raise BusinessError(code="TRACE_EXPORT_ERROR", message=str(e), path=str(path))
        return path


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if is_dataclass(value) and not isinstance(value, type):
        return {k: _plain(v) for k, v in asdict(value).items()}
    if isinstance(value, dict):
        return {str(k): _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


def _to_jsonable(value: Any) -> Any:
    try:
        plain = _plain(value)
        json.dumps(plain, ensure_ascii=False)
        return plain
    except (TypeError, ValueError, RecursionError) as e:
        return {"error": "unserializable", "detail": str(e), "repr": _safe_repr(value)}


def _safe_repr(value: Any) -> str:
    try:
        return repr(value)[:400]
    except Exception:  # noqa: BLE001 - repr 本身可能出错，trace 不允许抛出
        return f"<{type(value).__name__}>"
