"""
STS SLA Module
==============

Bounded Context for support tickets (STS) and their SLA compliance.

Responsibilities:
- Ticket lifecycle state machine (open, respond, progress, resolve, close)
- Reconstruct the status timeline of a ticket from its event log
- Accumulate SLA minutes, pausing on vendor waits and skipping maintenance windows
- Evaluate response/resolution breaches against per-component policies
- Report live progress and near-breach warnings
- Mirror ticket status onto linked cases
- Compliance dashboard from the persisted evaluation
"""

__version__ = "1.0.0"
