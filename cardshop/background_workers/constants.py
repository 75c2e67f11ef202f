from cardshop.common.logging_setup import get_logger

logger = get_logger("cardshop.sweeper")

RESULT_PAID = "paid"
RESULT_CANCELLED = "cancelled"
RESULT_SKIPPED = "skipped"
RESULT_UNAVAILABLE = "gateway_unavailable"
RESULT_AMOUNT_MISMATCH = "amount_mismatch"
