import json
import math
from typing import Any, Dict, List, Optional, Tuple
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from cardshop.common.utils import as_utc
from cardshop.payments.constants import PAYMENT_LOG_PAGE_SIZE, logger
from cardshop.schema.full_schema import PaymentLog


def _payload_text(payload: Any) -> Optional[str]:
    if payload is None:
        return None
    if isinstance(payload, str):
        return payload
    return json.dumps(payload, default=str, ensure_ascii=False)


async def log_payment(session, event_type: str, *, order_id: Optional[int] = None, order_no: Optional[str] = None,
                      payload: Any = None, result: str, message: Optional[str] = None) -> None:
    """Append one audit row in its own commit.

    The log is write-only, so a failed insert is reported and dropped. Never call this
    while holding a product lock.
    """
    entry = PaymentLog(
        order_id=order_id,
        order_no=order_no,
        event_type=event_type,
        payload=_payload_text(payload),
        result=result,
        message=message,
    )
    try:
        session.add(entry)
        await session.commit()
    except SQLAlchemyError:
        await session.rollback()
        logger.exception("payment_log.insert_failed", extra={"event_type": event_type, "order_no": order_no})


async def list_payment_logs(session, order_no: Optional[str] = None, page: int = 1,
                            page_size: int = PAYMENT_LOG_PAGE_SIZE) -> Tuple[List[PaymentLog], Dict[str, int]]:
    """Newest first. A page past the end is clamped to the last page."""
    count_stmt = select(func.count()).select_from(PaymentLog)
    stmt = select(PaymentLog)
    if order_no:
        count_stmt = count_stmt.where(PaymentLog.order_no == order_no)
        stmt = stmt.where(PaymentLog.order_no == order_no)

    total = int((await session.execute(count_stmt)).scalar_one() or 0)
    total_pages = max(1, math.ceil(total / page_size))
    page = min(max(1, page), total_pages)

    stmt = stmt.order_by(PaymentLog.id.desc()).limit(page_size).offset((page - 1) * page_size)
    logs = list((await session.execute(stmt)).scalars().all())
    return logs, {"page": page, "page_size": page_size, "total": total, "total_pages": total_pages}


def payment_log_view(entry: PaymentLog) -> Dict[str, Any]:
    created_at = as_utc(entry.created_at)
    return {
        "id": entry.id,
        "order_id": entry.order_id,
        "order_no": entry.order_no,
        "event_type": entry.event_type,
        "result": entry.result,
        "message": entry.message,
        "payload": entry.payload,
        "created_at": created_at.isoformat() if created_at else None,
    }
