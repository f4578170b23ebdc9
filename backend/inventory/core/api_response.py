from fastapi import Request


def get_request_id(request: Request) -> str:
    rid = getattr(request.state, "request_id", None)
    return str(rid) if rid else "-"


def error_response_payload(
    request: Request,
    *,
    code: str,
    message: str,
    details=None,
) -> dict:
    return {
        "ok": False,
        "error": {
            "code": code,
            "message": message,
            "details": details,
        },
        "request_id": get_request_id(request),
    }


def success_response_payload(
    request: Request,
    *,
    data,
    meta: dict | None = None,
) -> dict:
    return {
        "ok": True,
        "data": data,
        "meta": meta or {},
        "request_id": get_request_id(request),
    }


def split_http_detail(status_code: int, detail) -> tuple[str, str, object]:
    """Turn an ``HTTPException.detail`` into ``(code, message, details)``.

    Structured details carry their own ``code`` and ``message`` keys; the rest
    of the mapping becomes the error details.
    """
    if isinstance(detail, dict):
        code = str(detail.get("code") or f"http_{status_code}")
        message = str(detail.get("message") or "Request failed")
        rest = {k: v for k, v in detail.items() if k not in {"code", "message"}}
        return code, message, rest or None
    if isinstance(detail, str):
        return f"http_{status_code}", detail, detail
    return f"http_{status_code}", "Request failed", detail
