from fastapi import Request

LOOPBACK_ORIGIN = "127.0.0.1"
MAX_ORIGIN_LENGTH = 64
MAX_USER_AGENT_LENGTH = 255


def resolve_origin(request: Request) -> str:
    """Best-effort network origin of the request.

    Precedence: direct peer, first ``X-Forwarded-For`` hop, ``X-Real-IP``,
    then loopback.
    """
    if request.client and request.client.host:
        return request.client.host[:MAX_ORIGIN_LENGTH]
    forwarded = request.headers.get("x-forwarded-for", "")
    first_hop = forwarded.split(",")[0].strip()
    if first_hop:
        return first_hop[:MAX_ORIGIN_LENGTH]
    real_ip = request.headers.get("x-real-ip", "").strip()
    if real_ip:
        return real_ip[:MAX_ORIGIN_LENGTH]
    return LOOPBACK_ORIGIN


def request_user_agent(request: Request) -> str | None:
    return request.headers.get("user-agent", "")[:MAX_USER_AGENT_LENGTH] or None
