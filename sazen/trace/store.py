"""Reading and writing trace files and session manifests."""

import json
from pathlib import Path

import structlog
from pydantic import ValidationError

from ..errors import SazenError
from .models import DiffCounts, SavedSession, SavedTrace, TimelineEntry

logger = structlog.get_logger()

SESSION_MANIFEST_FILE = "session.json"
STORAGE_STATE_FILE = "storage-state.json"


class TraceFormatError(SazenError):
    """A trace or manifest file is not valid JSON of the expected shape."""
    pass


def _write_json(path: Path, data: dict) -> Path:
    path = path.resolve()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2), encoding="utf-8")
    return path


def write_trace(path: str | Path, trace: SavedTrace) -> str:
    written = _write_json(Path(path), trace.to_dict())
    logger.info("Trace saved", path=str(written), records=len(trace.records))
    return str(written)


def load_saved_trace(path: str | Path) -> tuple[str, SavedTrace]:
    """Load a trace file; returns its absolute path and the parsed trace."""
    absolute = Path(path).resolve()
    try:
        raw = json.loads(absolute.read_text(encoding="utf-8"))
        return str(absolute), SavedTrace.model_validate(raw)
    except (json.JSONDecodeError, ValidationError) as e:
        raise TraceFormatError(f"Invalid trace file {absolute}: {e}") from e


def get_trace_timeline(trace: SavedTrace) -> list[TimelineEntry]:
    """Timeline sorted by index, or one derived from the records when absent."""
    if trace.timeline:
        return sorted(trace.timeline, key=lambda entry: entry.index)

    return [
        TimelineEntry(
            index=index,
            action_type=record.action_type,
            status=record.result.status,
            duration_ms=record.result.duration_ms,
            post_url=record.result.post_url or "",
            post_dom_hash=record.result.post_dom_hash,
            dom_diff_summary=DiffCounts(),
            event_count=record.result.event_count or 0,
        )
        for index, record in enumerate(trace.records)
    ]


def session_dir(name: str, root_dir: str | Path) -> Path:
    return (Path(root_dir) / name).resolve()


def write_session_manifest(manifest: SavedSession, root_dir: str | Path) -> str:
    written = _write_json(session_dir(manifest.name, root_dir) / SESSION_MANIFEST_FILE, manifest.to_dict())
    return str(written)


def load_session_manifest(name: str, root_dir: str | Path) -> SavedSession:
    path = session_dir(name, root_dir) / SESSION_MANIFEST_FILE
    try:
        return SavedSession.model_validate(json.loads(path.read_text(encoding="utf-8")))
    except (json.JSONDecodeError, ValidationError) as e:
        raise TraceFormatError(f"Invalid session manifest {path}: {e}") from e
