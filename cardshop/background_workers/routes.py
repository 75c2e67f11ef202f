from fastapi import APIRouter, Request
from cardshop.background_workers.expiry_sweeper import ExpirySweeper
from cardshop.common.constants import request_id_ctx
from cardshop.common.utils import build_success, json_ok
from cardshop.db.connection import async_session
from cardshop.payments.dependencies import get_gateway

sweeper_admin_router = APIRouter()


@sweeper_admin_router.post("/sweep")
async def run_sweep(request: Request):
    sweeper = getattr(request.app.state, "sweeper", None)
    if sweeper is not None:
        report = await sweeper.run_once()
    else:
        session_factory = getattr(request.app.state, "session_factory", None) or async_session
        sweeper = ExpirySweeper(session_factory, gateway=get_gateway(request))
        try:
            report = await sweeper.run_once()
        finally:
            await sweeper.shutdown()
    return json_ok(build_success(report.as_dict(), request_id=request_id_ctx.get(None)))
