import time
from datetime import datetime,timezone
from typing import Any, Dict, Optional, Union

from fastapi.responses import JSONResponse

def now() -> datetime:
    return datetime.now(timezone.utc)


def now_ts() -> int:
    """Current time as epoch seconds (inventory lock expiry unit)."""
    return int(time.time())


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    # sqlite hands back naive datetimes even for timezone=True columns
    if dt is None or dt.tzinfo is not None:
        return dt
    return dt.replace(tzinfo=timezone.utc)


def money(value: Union[int, float, str]) -> float:
    return round(float(value), 2)


def build_success(data: Dict[str, Any],
                  trace_id: Optional[str] = None,request_id: Optional[str] = None,) -> Dict[str, Any]:
    return {
        "status": "ok",
        "data": data,
        "error": None,
        "trace_id": trace_id,
        "request_id": request_id,
    }

def build_error(code: Union[str, int] = "UNKNOWN_ERROR",
                details: Optional[Any] = None,
                request_id: Optional[str] = None,
                trace_id: Optional[str] = None) -> Dict[str, Any]:
   
    return {
        "status": "error",
        "data": None,
        "error": {"code": code, "details": details},
        "trace_id": trace_id,
        "request_id": request_id,
    }

def json_ok(content: Dict[str, Any], status_code: int = 200,headers = None) -> JSONResponse:
    return JSONResponse(content, status_code=status_code,headers=headers)

def json_error(content: Dict[str, Any], status_code: int = 500, headers=None) -> JSONResponse:
    return JSONResponse(content, status_code=status_code, headers=headers)

