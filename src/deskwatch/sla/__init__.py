"""
SLA Engine Module
=================

Bounded context for help-desk SLA tracking and escalation.

Responsibilities:
- Measure response and resolution time against per-priority targets,
  in wall-clock or business minutes, net of pause periods
- Classify each track (ok, warning, overdue, met, breached)
- Keep an append-only SLA history
- Emit escalation events once thresholds are crossed
- Expose ticket events, admin and query endpoints over HTTP
"""

__version__ = "1.0.0"
