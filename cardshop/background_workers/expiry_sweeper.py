import asyncio
from dataclasses import asdict, dataclass
from datetime import timedelta
from typing import Any, Callable, Dict, Optional
from cardshop.background_workers.base_worker import BaseWorker
from cardshop.background_workers.constants import (
    RESULT_AMOUNT_MISMATCH, RESULT_CANCELLED, RESULT_PAID, RESULT_SKIPPED, RESULT_UNAVAILABLE, logger,
)
from cardshop.common.custom_exceptions import GatewayAmountMismatch, GatewayUnavailable, InvalidStateTransition
from cardshop.common.utils import now, now_ts
from cardshop.config.settings import config_settings
from cardshop.inventory import locks as reservations
from cardshop.orders import repository as orders_repo
from cardshop.orders.services import cancel_order
from cardshop.payments.epay_client import EpayClient, epay_client
from cardshop.payments.services import sync_order_by_gateway
from cardshop.schema.full_schema import OrderStatus


@dataclass
class SweepReport:
    scanned: int = 0
    paid: int = 0
    cancelled: int = 0
    skipped: int = 0
    unavailable: int = 0
    amount_mismatch: int = 0
    errors: int = 0

    def as_dict(self) -> Dict[str, int]:
        return asdict(self)


async def reconcile_and_expire(session, order_id: int, gateway: EpayClient) -> str:
    """Settle one overdue pending order: paid if the gateway says so, cancelled otherwise.

    An unreachable gateway, or a gateway payment for the wrong amount, leaves the order
    pending for the next pass.
    """
    order = await orders_repo.get_order(session, order_id)
    if order is None or order.status != OrderStatus.PENDING.value:
        return RESULT_SKIPPED
    order_no = order.order_no

    if gateway.configured:
        try:
            if await sync_order_by_gateway(session, order_no, gateway=gateway):
                return RESULT_PAID
        except GatewayUnavailable as exc:
            logger.warning("sweeper.gateway_unavailable", extra={"order_no": order_no, "error": exc.message})
            return RESULT_UNAVAILABLE
        except GatewayAmountMismatch:
            # sync_order_by_gateway already logged it; needs a human or a later notify
            return RESULT_AMOUNT_MISMATCH

    try:
        await cancel_order(session, order_id, reason="expired")
    except InvalidStateTransition:
        # paid or cancelled by someone else since the candidate scan
        return RESULT_SKIPPED
    return RESULT_CANCELLED


class ExpirySweeper(BaseWorker):
    """Periodic producer that fans overdue pending orders out to the worker pool."""

    def __init__(
        self,
        session_factory: Callable[[], Any],
        gateway: Optional[EpayClient] = None,
        *,
        interval: float = None,
        workers_count: int = None,
        batch_size: int = None,
        order_timeout_minutes: int = None,
    ):
        super().__init__(
            workers_count=workers_count or config_settings.SWEEP_WORKERS,
            name="sweeper",
        )
        self.session_factory = session_factory
        self.gateway = gateway or epay_client
        self.interval = interval if interval is not None else config_settings.SWEEP_INTERVAL_SECONDS
        self.batch_size = batch_size or config_settings.SWEEP_BATCH_SIZE
        self.order_timeout_minutes = (order_timeout_minutes if order_timeout_minutes is not None
                                      else config_settings.ORDER_TIMEOUT_MINUTES)
        self._report: Optional[SweepReport] = None
        self._pass_lock = asyncio.Lock()
        self._stop_event = asyncio.Event()
        self._loop_task: Optional[asyncio.Task] = None

    async def task_executor(self, task: Dict[str, Any], wname: str) -> None:
        order_id = task["order_id"]
        try:
            async with self.session_factory() as session:
                outcome = await reconcile_and_expire(session, order_id, self.gateway)
        except Exception:
            self._report.errors += 1
            raise

        if outcome == RESULT_PAID:
            self._report.paid += 1
        elif outcome == RESULT_CANCELLED:
            self._report.cancelled += 1
        elif outcome == RESULT_UNAVAILABLE:
            self._report.unavailable += 1
        elif outcome == RESULT_AMOUNT_MISMATCH:
            self._report.amount_mismatch += 1
        else:
            self._report.skipped += 1
        logger.debug("[%s] sweep outcome", wname, extra={"order_id": order_id, "outcome": outcome})

    async def _candidates(self):
        cutoff = now() - timedelta(minutes=self.order_timeout_minutes)
        async with self.session_factory() as session:
            expired = await reservations.sweep_expired(session, now_ts(), limit=self.batch_size)
            return await orders_repo.stale_pending_order_ids(
                session, cutoff, [lock.order_id for lock in expired], limit=self.batch_size)

    async def run_once(self) -> SweepReport:
        """One full pass; returns once every candidate has been handled."""
        async with self._pass_lock:
            await self()
            self._report = SweepReport()
            order_ids = await self._candidates()
            self._report.scanned = len(order_ids)
            for order_id in order_ids:
                await self.submit({"order_id": order_id})
            await self.queue.join()

            report = self._report
        if report.scanned:
            logger.info("sweeper.pass.done", extra=report.as_dict())
        return report

    async def run(self):
        logger.info("sweeper.started", extra={"interval": self.interval, "workers": self.workers_count})
        while not self._stop_event.is_set():
            try:
                await self.run_once()
            except Exception:
                logger.exception("sweeper.pass.failed")
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass
        logger.info("sweeper.stopped")

    def start(self) -> asyncio.Task:
        if self._loop_task is None:
            self._loop_task = asyncio.create_task(self.run())
        return self._loop_task

    async def close(self):
        self._stop_event.set()
        if self._loop_task is not None:
            try:
                await asyncio.wait_for(self._loop_task, timeout=30.0)
            except asyncio.TimeoutError:
                self._loop_task.cancel()
            self._loop_task = None
        await self.shutdown(drain_first=True)
