import math
import secrets
import time
from cardshop.common.utils import money
from cardshop.orders.constants import ORDER_NO_PREFIX


def generate_order_no() -> str:
    # prefix + millisecond timestamp + 8 random hex chars, e.g. O1718000000000A1B2C3D4
    return f"{ORDER_NO_PREFIX}{int(time.time() * 1000)}{secrets.token_hex(4).upper()}"


def compute_amount(price: float, quantity: int, points: int, points_ratio: int):
    """Return (amount owed, points actually used).

    Points are capped at what covers the total so nobody burns more than needed.
    """
    total = money(price * quantity)
    points = max(int(points or 0), 0)
    if points_ratio <= 0 or points == 0 or total <= 0:
        return total, 0

    needed = math.ceil(round(total * points_ratio, 6))
    used = min(points, needed)
    amount = money(max(total - used / points_ratio, 0))
    return amount, used
