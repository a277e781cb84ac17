"""
Workflow Modules.

Thin orchestration layers over the workflow kernel and engines.
Each module contains:
- ORM tables (the nouns, reached by table name through the record store)
- Workflows (phases, guards, notification events)
- A service facade returning ``WorkflowResult`` values

Modules:
- Tickets: multi-rank approval with a purchase chain and extra approval
- Coins purchase: phased order lifecycle with receiving confirmation
"""

from workflow_modules import coins_purchase, tickets

__all__ = ["coins_purchase", "tickets"]
