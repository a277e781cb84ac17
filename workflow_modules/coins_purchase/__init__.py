"""
Coins Purchase Module (``workflow_modules.coins_purchase``).

Responsibility
--------------
Purchase orders for coins walking creation -> sending -> receiving ->
coins_entry -> completed.  Entering ``coins_entry`` creates one receiving
header and line per brand; leaving it requires every brand's confirmed
coins to reach its control amount.  Rolling back out of ``coins_entry``
deletes those artifacts.

Architecture position
---------------------
**Modules layer** -- ORM tables, workflow definition, DTOs and a service
facade.  All decisions are made by ``workflow_engines``.
"""

from workflow_modules.coins_purchase.models import DelayedOrder, DeliverySummary, OrderLine
from workflow_modules.coins_purchase.service import PurchaseOrderService

__all__ = ["DelayedOrder", "DeliverySummary", "OrderLine", "PurchaseOrderService"]
