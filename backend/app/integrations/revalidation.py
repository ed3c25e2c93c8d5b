import logging

import httpx

from app.core.config import settings

logger = logging.getLogger(__name__)


def revalidate_paths(paths: list[str]) -> dict:
    """Ask the public site to rebuild ``paths``.

    Without a configured webhook the request is only logged. Webhook failures
    are logged and never propagate to the caller.
    """
    logger.info("revalidate_paths paths=%s", ",".join(paths))
    if not settings.revalidation_webhook_url:
        return {"revalidated": len(paths), "delivered": False}

    try:
        with httpx.Client(timeout=settings.revalidation_timeout_seconds) as client:
            response = client.post(settings.revalidation_webhook_url, json={"paths": paths})
        response.raise_for_status()
    except httpx.HTTPError as exc:
        logger.warning("revalidate_paths_failed paths=%s error=%s", ",".join(paths), exc)
        return {"revalidated": 0, "delivered": False}

    return {"revalidated": len(paths), "delivered": True}
