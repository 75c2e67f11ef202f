from contextlib import asynccontextmanager
from typing import Optional
from fastapi import FastAPI
from sqlalchemy.ext.asyncio import AsyncEngine
from cardshop.api.__init__ import cur_version
from cardshop.api.routers import admin_routers, public_routers
from cardshop.background_workers.expiry_sweeper import ExpirySweeper
from cardshop.common.custom_exceptions import register_all_exceptions
from cardshop.common.logging_setup import setup_logging, shutdown_logging
from cardshop.config.admin_config import admin_config
from cardshop.config.settings import config_settings
from cardshop.db.connection import async_engine, build_session_factory, init_models
from cardshop.db.locks import configure_write_locks
from cardshop.db.utils import is_sqlite
from cardshop.middlewares.identity_middleware import UserIdentityMiddleware
from cardshop.middlewares.request_id_middleware import RequestIdMiddleware
from cardshop.payments.epay_client import EpayClient, epay_client


def create_app(engine: Optional[AsyncEngine] = None, session_factory=None,
               gateway: Optional[EpayClient] = None, start_sweeper: Optional[bool] = None):

    engine = engine or async_engine
    session_factory = session_factory or build_session_factory(engine)
    gateway = gateway or epay_client
    run_sweeper = config_settings.ENABLE_SWEEPER if start_sweeper is None else start_sweeper

    @asynccontextmanager
    async def app_lifespan(app: FastAPI):
        setup_logging()
        configure_write_locks(is_sqlite(str(engine.url)))
        await init_models(engine)

        app.state.session_factory = session_factory
        app.state.epay_client = gateway
        app.state.sweeper = ExpirySweeper(session_factory, gateway=gateway)
        if run_sweeper:
            app.state.sweeper.start()

        try:
            yield
        finally:
            # new requests are no longer accepted at this point
            await app.state.sweeper.close()
            await gateway.aclose()
            # safe to dispose DB engine after workers exit
            await engine.dispose()
            shutdown_logging()

    app = FastAPI(
        title="Cardshop",
        version=cur_version,
        lifespan=app_lifespan)

    app.include_router(public_routers)

    if admin_config.ENABLE_ADMIN:
        app.include_router(admin_routers)      # mounts /api/v1/admin

    app.add_middleware(UserIdentityMiddleware)
    app.add_middleware(RequestIdMiddleware)
    register_all_exceptions(app)

    return app


app = create_app()
