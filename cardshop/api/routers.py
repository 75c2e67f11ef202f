from fastapi import APIRouter, Depends
from cardshop.api.__init__ import version_prefix
from cardshop.background_workers.routes import sweeper_admin_router
from cardshop.inventory.routes import inventory_admin_router
from cardshop.orders.routes import orders_router
from cardshop.payments.routes import payments_admin_router
from cardshop.payments.webhooks import pay_router
from cardshop.refunds.routes import refunds_admin_router
from cardshop.user.dependencies import require_admin


public_routers = APIRouter(prefix=version_prefix)

public_routers.include_router(orders_router, prefix="/orders", tags=["orders"])
public_routers.include_router(pay_router, prefix="/pay", tags=["payments"])

#--------------------------------------------------------------------------------------------------------

admin_routers = APIRouter(prefix=f"{version_prefix}/admin", dependencies=[Depends(require_admin)])

admin_routers.include_router(inventory_admin_router, prefix="/products", tags=["inventory-admin"])
admin_routers.include_router(refunds_admin_router, prefix="/orders", tags=["refunds-admin"])
admin_routers.include_router(sweeper_admin_router, tags=["sweeper-admin"])
admin_routers.include_router(payments_admin_router, tags=["payments-admin"])
