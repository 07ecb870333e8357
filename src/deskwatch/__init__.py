"""
Deskwatch SLA
=============

SLA tracking and escalation engine for help-desk tickets.
"""

__version__ = "1.0.0"
