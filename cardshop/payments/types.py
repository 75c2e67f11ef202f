from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from cardshop.common.utils import money as _money


@dataclass
class PaymentRedirect:
    """Result of creating a payment: where the buyer goes to confirm it."""
    redirect_url: str
    out_trade_no: str


@dataclass
class GatewayQueryResult:
    """Order status as reported by the gateway's query endpoint.

    code == 1 means the gateway knows the order; status == 1 means it was paid.
    """
    code: int
    status: int
    money: Optional[float] = None
    trade_no: Optional[str] = None
    msg: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def paid(self) -> bool:
        return self.code == 1 and self.status == 1

    def amount_matches(self, amount: float) -> bool:
        if self.money is None:
            return False
        return abs(_money(self.money) - _money(amount)) < 0.01


@dataclass
class GatewayRefundResult:
    success: bool
    code: int
    msg: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)
