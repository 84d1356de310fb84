"""Visit formatters."""

from location_tracker.formatters.visit_pretty import format_duration, render_status, render_visits_pretty

__all__ = ["format_duration", "render_status", "render_visits_pretty"]
