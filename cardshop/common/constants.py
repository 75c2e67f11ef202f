import contextvars
from typing import Optional

# Context variables for request and trace id
request_id_ctx: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("request_id", default=None)

# result markers written to payment_logs.result
LOG_SUCCESS = "success"
LOG_FAIL = "fail"
LOG_IGNORE = "ignore"
