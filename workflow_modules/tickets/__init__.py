"""
Tickets Module (``workflow_modules.tickets``).

Responsibility
--------------
Multi-rank ticket approval: a department's primary chain, followed by
the purchase (secondary) chain for purchase tickets, with cost-center
gating on flagged purchase ranks and an extra-approval side channel that
blocks completion while pending.

Architecture position
---------------------
**Modules layer** -- ORM tables, workflow definitions and a service
facade.  All decisions are made by ``workflow_engines``.
"""

from workflow_modules.tickets.service import TicketApprovalService

__all__ = ["TicketApprovalService"]
