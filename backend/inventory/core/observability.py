import logging
import os

from fastapi import Request

from inventory.core.api_response import get_request_id


def configure_logging() -> None:
    if logging.getLogger().handlers:
        return
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def log_business_event(
    logger: logging.Logger,
    request: Request | None,
    *,
    event: str,
    level: int = logging.INFO,
    **fields,
) -> None:
    # Background jobs have no request; they log with request_id=-.
    request_id = get_request_id(request) if request is not None else "-"
    chunks = [f"event={event}", f"request_id={request_id}"]
    chunks.extend(f"{key}={value}" for key, value in fields.items())
    logger.log(level, "business_event %s", " ".join(chunks))
