"""统一响应结构工具。

服务层返回的报告与明细行都是 dataclass，这里统一转成可序列化的字典，
路由层直接把服务结果放进 `data` 即可。
"""

from dataclasses import asdict, is_dataclass
from datetime import datetime, timezone
from time import perf_counter
from typing import Any

from fastapi import Request

DEFAULT_ERROR_MESSAGE = "internal server error"


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "")


def _to_payload(value: Any) -> Any:
    """把 dataclass（含嵌套在列表、字典中的）转换为字典。"""
    if is_dataclass(value) and not isinstance(value, type):
        return asdict(value)
    if isinstance(value, dict):
        return {key: _to_payload(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_payload(item) for item in value]
    return value


def _request_meta(request: Request) -> dict[str, Any]:
    started_at = getattr(request.state, "request_started_at", None)
    return {
        "method": request.method.upper(),
        "path": request.url.path,
        "timestamp": _utc_now_iso(),
        "process_ms": int((perf_counter() - started_at) * 1000) if isinstance(started_at, float) else None,
    }


def success(request: Request, data: Any, meta: dict[str, Any] | None = None) -> dict[str, Any]:
    """构造统一成功响应结构。"""
    final_meta = _request_meta(request)
    if meta:
        final_meta.update(meta)
    return {
        "request_id": _request_id(request),
        "data": _to_payload(data),
        "meta": final_meta,
    }


def batch_meta(*, failures: list, cancelled: bool = False) -> dict[str, Any]:
    """重算类接口的附加元信息：失败条数与是否被取消。"""
    return {"failure_count": len(failures), "cancelled": cancelled, "complete": not failures and not cancelled}


def error_payload(
    request: Request,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """构造统一错误响应结构。"""
    final_details = {key: value for key, value in _request_meta(request).items() if key != "process_ms"}
    if details:
        final_details.update(details)
    return {
        "request_id": _request_id(request),
        "error": {
            "code": code,
            "message": message,
            "details": final_details,
        },
    }
