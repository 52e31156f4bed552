"""In-process metrics collector with Prometheus text exposition."""

from __future__ import annotations

from collections import defaultdict
from threading import Lock
import time
from typing import Dict, Tuple


_lock = Lock()
_started_at = time.time()

_tool_calls_total: Dict[Tuple[str, str], int] = defaultdict(int)
_tasks_finished_total: Dict[Tuple[str, str], int] = defaultdict(int)
_images_generated_total: Dict[str, int] = defaultdict(int)
_transparency_runs_total: Dict[str, int] = defaultdict(int)
_progress_dropped_total = 0


def _escape_label(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def _normalize_label(value: str, *, fallback: str = "unknown") -> str:
    normalized = (value or "").strip()
    return normalized or fallback


def record_tool_call(*, tool: str, path: str) -> None:
    with _lock:
        _tool_calls_total[(_normalize_label(tool), _normalize_label(path))] += 1


def record_task_finished(*, backend: str, status: str) -> None:
    with _lock:
        _tasks_finished_total[(_normalize_label(backend), _normalize_label(status))] += 1


def record_images_generated(*, model: str, count: int = 1) -> None:
    if count <= 0:
        return
    with _lock:
        _images_generated_total[_normalize_label(model)] += int(count)


def record_transparency_run(*, mode: str) -> None:
    with _lock:
        _transparency_runs_total[_normalize_label(mode)] += 1


def record_progress_dropped() -> None:
    global _progress_dropped_total
    with _lock:
        _progress_dropped_total += 1


def render_prometheus_metrics(*, app_name: str, app_version: str, env: str) -> str:
    uptime = max(time.time() - _started_at, 0.0)

    with _lock:
        tool_calls = dict(_tool_calls_total)
        tasks_finished = dict(_tasks_finished_total)
        images_generated = dict(_images_generated_total)
        transparency_runs = dict(_transparency_runs_total)
        progress_dropped = _progress_dropped_total

    lines = [
        "# HELP nano_banana_build_info Build metadata.",
        "# TYPE nano_banana_build_info gauge",
        (
            f'nano_banana_build_info{{app_name="{_escape_label(app_name)}",'
            f'version="{_escape_label(app_version)}",env="{_escape_label(env)}"}} 1'
        ),
        "# HELP nano_banana_process_uptime_seconds Process uptime in seconds.",
        "# TYPE nano_banana_process_uptime_seconds gauge",
        f"nano_banana_process_uptime_seconds {uptime:.6f}",
        "# HELP nano_banana_tool_calls_total Tool calls by execution path.",
        "# TYPE nano_banana_tool_calls_total counter",
    ]
    for (tool, path), value in sorted(tool_calls.items()):
        lines.append(
            f'nano_banana_tool_calls_total{{tool="{_escape_label(tool)}",path="{_escape_label(path)}"}} {value}'
        )

    lines.extend(
        [
            "# HELP nano_banana_tasks_finished_total Tasks reaching a terminal state.",
            "# TYPE nano_banana_tasks_finished_total counter",
        ]
    )
    for (backend, status), value in sorted(tasks_finished.items()):
        lines.append(
            (
                f'nano_banana_tasks_finished_total{{backend="{_escape_label(backend)}",'
                f'status="{_escape_label(status)}"}} {value}'
            )
        )

    lines.extend(
        [
            "# HELP nano_banana_images_generated_total Images returned by the generation model.",
            "# TYPE nano_banana_images_generated_total counter",
        ]
    )
    for model, value in sorted(images_generated.items()):
        lines.append(f'nano_banana_images_generated_total{{model="{_escape_label(model)}"}} {value}')

    lines.extend(
        [
            "# HELP nano_banana_transparency_runs_total Images post-processed by mode.",
            "# TYPE nano_banana_transparency_runs_total counter",
        ]
    )
    for mode, value in sorted(transparency_runs.items()):
        lines.append(f'nano_banana_transparency_runs_total{{mode="{_escape_label(mode)}"}} {value}')

    lines.extend(
        [
            "# HELP nano_banana_progress_dropped_total Progress sessions disabled after a send failure.",
            "# TYPE nano_banana_progress_dropped_total counter",
            f"nano_banana_progress_dropped_total {progress_dropped}",
            "",
        ]
    )
    return "\n".join(lines)


def reset_metrics_for_tests() -> None:
    global _started_at, _progress_dropped_total
    with _lock:
        _tool_calls_total.clear()
        _tasks_finished_total.clear()
        _images_generated_total.clear()
        _transparency_runs_total.clear()
        _progress_dropped_total = 0
    _started_at = time.time()
