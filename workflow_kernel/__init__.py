"""
Workflow Kernel

Staged approval and delivery workflow engine for back-office subjects
(tickets, purchase orders) with:
- Ordered approver chains with a secondary (purchase) phase
- Side-channel approvals that gate final completion
- Phased lifecycles with cascading rollback
- Derived delivery status from confirmed receiving lines
- Append-only audit history
"""

__version__ = "0.1.0"
