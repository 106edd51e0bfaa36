"""
FleetDesk STS
=============

Support ticket service with SLA compliance tracking for fleet maintenance.
"""

__version__ = "1.0.0"
