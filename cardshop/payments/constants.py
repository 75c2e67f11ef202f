from cardshop.common.logging_setup import get_logger

logger = get_logger("cardshop.payments")

# payment log event types
PAY_CREATE = "pay_create"
PAY_NOTIFY = "pay_notify"
PAY_QUERY = "pay_query"
REFUND_REQUEST = "refund_request"
REFUND_APPROVE = "refund_approve"
REFUND_REJECT = "refund_reject"
REFUND_API = "refund_api"

TRADE_SUCCESS = "TRADE_SUCCESS"

# gateway messages meaning the refund already went through
REFUND_DONE_MARKERS = ("已完成", "已退回")

# plain text replies the gateway expects from the notify endpoint
NOTIFY_SUCCESS = "success"
NOTIFY_FAIL = "fail"
NOTIFY_IGNORE = "ignore"

PAYMENT_LOG_PAGE_SIZE = 20
