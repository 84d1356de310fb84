"""可读到访列表格式化。"""

from __future__ import annotations

from datetime import tzinfo
from typing import Sequence

from location_tracker.domain.tracking_types import RemainingTime, TrackingMode, Visit

ONGOING_TEXT = "Still here"
MODE_LABELS = {
    TrackingMode.DISABLED: "Off",
    TrackingMode.VISIT_TRACKING: "Visit tracking",
    TrackingMode.CONTINUOUS_TRACKING: "Continuous tracking",
}


def format_duration(visit: Visit) -> str:
    """到访时长文本。"""

    minutes = visit.duration_minutes
    if minutes is None:
        return ONGOING_TEXT
    return format_minutes(minutes)


def format_minutes(total_minutes: float) -> str:
    minutes = max(total_minutes, 0.0)
    if minutes < 60:
        return f"{int(minutes)} min"

    hours = int(minutes // 60)
    remaining_minutes = int(minutes % 60)
    if remaining_minutes == 0:
        return f"{hours}h"
    return f"{hours}h {remaining_minutes}m"


def render_visits_pretty(
    visits: Sequence[Visit],
    tz: tzinfo | None = None,
    emoji: bool = True,
) -> str:
    """渲染到访列表。"""

    lines: list[str] = []
    header = f"🗓️ Visits ({len(visits)})" if emoji else f"Visits ({len(visits)})"
    lines.append(header)
    lines.append("─" * 72)

    if not visits:
        lines.append("No visits recorded")
        return "\n".join(lines)

    for visit in visits:
        lines.extend(_format_visit(visit, tz=tz, emoji=emoji))
        lines.append("")

    while lines and lines[-1] == "":
        lines.pop()
    return "\n".join(lines)


def render_status(mode: TrackingMode, remaining: RemainingTime, current: Visit | None) -> str:
    """渲染追踪状态摘要。"""

    lines = [f"Mode: {MODE_LABELS[mode]}"]
    if remaining.status == "no_limit" and mode is TrackingMode.CONTINUOUS_TRACKING:
        lines.append("Auto-off: never")
    elif remaining.status == "counting" and remaining.seconds is not None:
        lines.append(f"Auto-off in: {format_minutes(remaining.seconds / 60.0)}")
    if current is not None:
        lines.append(f"Current visit: {current.display_name} since {current.arrived_at:%Y-%m-%d %H:%M}")
    return "\n".join(lines)


def _format_visit(visit: Visit, tz: tzinfo | None, emoji: bool) -> list[str]:
    arrived_at = visit.arrived_at.astimezone(tz)
    if visit.departed_at is None:
        end_text = "now"
    else:
        end_text = f"{visit.departed_at.astimezone(tz):%Y-%m-%d %H:%M}"

    marker = "📍" if emoji else "[visit]"
    lines = [
        f"{marker} {arrived_at:%Y-%m-%d %H:%M} -> {end_text} ({format_duration(visit)})",
        f"   Place: {visit.display_name}",
    ]
    if visit.address and visit.address != visit.display_name:
        lines.append(f"   Address: {visit.address}")
    if not visit.geocoding_completed:
        lines.append("   Geocoding: pending")
    if visit.notes:
        lines.append(f"   Notes: {visit.notes}")
    lines.append(f"   ID: {visit.visit_id}")
    return lines
