import uuid
from datetime import timedelta
from typing import Dict, List, Optional, Union
from sqlalchemy import update
from cardshop.common.custom_exceptions import GatewayUnavailable
from cardshop.common.utils import now
from cardshop.inventory.services import add_cards
from cardshop.payments.epay_client import EpayClient, make_sign
from cardshop.payments.types import GatewayQueryResult, GatewayRefundResult, PaymentRedirect
from cardshop.schema.full_schema import Orders, Product, ProductStatus, Users

url_prefix = "/api/v1"


class FakeGateway(EpayClient):
    """EpayClient with the network calls scripted; signing and verification stay real."""

    def __init__(self):
        super().__init__(pid="1001", key="test-key", base_url="https://gateway.test")
        self.query_results: Dict[str, Union[GatewayQueryResult, Exception]] = {}
        self.refund_result: Union[GatewayRefundResult, Exception] = GatewayRefundResult(success=True, code=1, msg="ok")
        self.create_error: Optional[Exception] = None
        self.created: List[dict] = []
        self.queries: List[str] = []
        self.refunds: List[dict] = []

    def report_paid(self, order_no: str, amount: float, trade_no: str = "T-100"):
        self.query_results[order_no] = GatewayQueryResult(
            code=1, status=1, money=amount, trade_no=trade_no,
            raw={"code": 1, "status": 1, "money": f"{amount:.2f}", "trade_no": trade_no},
        )

    def report_unavailable(self, order_no: str):
        self.query_results[order_no] = GatewayUnavailable("gateway timed out")

    async def create_payment(self, out_trade_no, name, money, notify_url=None, return_url=None):
        self.created.append({"out_trade_no": out_trade_no, "name": name, "money": money})
        if self.create_error is not None:
            raise self.create_error
        return PaymentRedirect(redirect_url=f"https://gateway.test/confirm/{out_trade_no}", out_trade_no=out_trade_no)

    async def query_order(self, out_trade_no):
        self.queries.append(out_trade_no)
        result = self.query_results.get(out_trade_no, GatewayQueryResult(code=-1, status=0, msg="not found"))
        if isinstance(result, Exception):
            raise result
        return result

    async def refund(self, trade_no, money):
        self.refunds.append({"trade_no": trade_no, "money": money})
        if isinstance(self.refund_result, Exception):
            raise self.refund_result
        return self.refund_result


def signed_notify(gateway: EpayClient, order_no: str, money: float, trade_no: str = "T-100",
                  trade_status: str = "TRADE_SUCCESS") -> Dict[str, str]:
    params = {
        "pid": gateway.pid,
        "trade_no": trade_no,
        "out_trade_no": order_no,
        "type": "epay",
        "name": "Gift card",
        "money": f"{money:.2f}",
        "trade_status": trade_status,
        "sign_type": "MD5",
    }
    params["sign"] = make_sign(params, gateway.key)
    return params


async def seed_product(session, *, name: str = "Gift card", price: float = 10.0, cards: int = 5,
                       card_mode: bool = False, purchase_limit: int = 0,
                       status: ProductStatus = ProductStatus.ON_SALE) -> int:
    product = Product(name=name, price=price, stock=0, card_mode=card_mode,
                      purchase_limit=purchase_limit, status=int(status))
    session.add(product)
    await session.commit()
    product_id = product.id
    if cards:
        await add_cards(session, product_id, [f"CARD-{product_id}-{i}" for i in range(cards)])
    return product_id


async def seed_user(session, points: int = 0) -> int:
    user = Users(username=f"buyer-{uuid.uuid4().hex[:8]}", points=points)
    session.add(user)
    await session.commit()
    return user.id


async def backdate_order(session, order_id: int, minutes: int = 30) -> None:
    await session.execute(
        update(Orders).where(Orders.id == order_id).values(created_at=now() - timedelta(minutes=minutes))
    )
    await session.commit()
