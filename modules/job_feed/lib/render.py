from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from .config import SourceConfig
from .models import CacheStats, CollectTask, Record, RunStatus

DEFAULT_COLOR = 0x1E90FF


def color_int(value: str | int | None) -> int:
    """'#0077b5' -> 0x0077B5 (webhook embeds want an int); bad input -> default."""
    if isinstance(value, int):
        return value
    text = str(value or "").strip().lstrip("#")
    try:
        return int(text, 16)
    except ValueError:
        return DEFAULT_COLOR


def _field(name: str, value: str | None, inline: bool = True) -> dict[str, Any]:
    # Chat embeds reject empty field values
    return {"name": name, "value": (value or "Not specified")[:1024], "inline": inline}


def record_embed(record: Record, src: SourceConfig | None = None) -> dict[str, Any]:
    """
    One record as a chat-webhook embed:
      title -> link, company as description, Location/Posted fields,
      footer "Source: <label> | ID: <first 10 chars of id>".
    """
    label = src.display_name if src else record.source
    embed: dict[str, Any] = {
        "title": (record.title or "(no title)")[:256],
        "description": (record.company or "")[:4096],
        "color": color_int(src.color if src else None),
        "fields": [
            _field("Location", record.location),
            _field("Posted", record.posted_date),
        ],
        "footer": {"text": f"Source: {label} | ID: {record.id[:10]}"},
    }
    if record.url:
        embed["url"] = record.url
    if record.timestamp:
        embed["timestamp"] = record.timestamp
    return embed


# -----------------------------------------------------------------------------
# Announcement texts
# -----------------------------------------------------------------------------
def opening_text(src: SourceConfig) -> str:
    return f"{src.display_name} Job Postings Update"


def task_header(src: SourceConfig, task: CollectTask, count: int) -> str:
    noun = "posting" if count == 1 else "postings"
    return f"{src.display_name} - {task.label} ({count} new {noun})"


def task_error(src: SourceConfig, task: CollectTask, err: BaseException) -> str:
    return f"Error collecting {src.display_name} for {task.label} - {str(err)[:100]}"


def source_complete(src: SourceConfig, status: RunStatus) -> str:
    return f"{src.display_name} job collection complete. Found {status.jobs_found} new jobs."


def boards_summary(statuses: Mapping[str, RunStatus], labels: Mapping[str, str] | None = None) -> str:
    """
    Job collection complete for all job board sources. Found 7 new jobs total:
    - LinkedIn: 4
    - Dice: 3
    """
    labels = labels or {}
    total = sum(s.jobs_found for s in statuses.values())
    lines = [f"Job collection complete for all job board sources. Found {total} new jobs total:"]
    lines.extend(f"- {labels.get(name, name)}: {s.jobs_found}" for name, s in statuses.items())
    return "\n".join(lines)


def everything_summary(total: int, unwindowed: Mapping[str, RunStatus], labels: Mapping[str, str] | None = None) -> str:
    labels = labels or {}
    extra = ", ".join(f"{s.jobs_found} from {labels.get(name, name)}" for name, s in unwindowed.items())
    text = f"ALL sources job collection complete. Found {total} new listings total"
    return f"{text}, including {extra}." if extra else f"{text}."


# -----------------------------------------------------------------------------
# Operator views (CLI)
# -----------------------------------------------------------------------------
def status_lines(snapshot: Mapping[str, RunStatus]) -> list[str]:
    out: list[str] = []
    for name, s in snapshot.items():
        if s.last_run is None:
            out.append(f"{name}: never run")
            continue
        state = "ok" if s.success else "failed"
        out.append(
            f"{name}: {state} at {s.last_run.isoformat()} | jobs={s.jobs_found} errors={s.error_count}"
        )
    return out


def stats_lines(stats: Mapping[str, Any]) -> list[str]:
    out: list[str] = []
    for name, st in stats.items():
        if not isinstance(st, CacheStats):
            continue
        line = f"{name}: {st.count} ids ({st.backend})"
        if st.oldest or st.newest:
            line += f" oldest={st.oldest} newest={st.newest}"
        out.append(line)
    out.append(f"total: {stats.get('total', 0)}")
    return out
