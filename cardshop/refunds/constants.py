from cardshop.common.logging_setup import get_logger

logger = get_logger("cardshop.refunds")

NOT_REFUNDABLE_NOTE = "order status does not allow a refund"
