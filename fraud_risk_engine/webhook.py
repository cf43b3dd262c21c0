"""Hand-off of completed run summaries to the external notification service."""

from __future__ import annotations

import logging
import os
from typing import Any, Mapping, Optional

import httpx

logger = logging.getLogger(__name__)

DELIVERY_TIMEOUT = 5.0


def resolve_webhook_url(default: Optional[str] = None) -> Optional[str]:
    return os.getenv("RISK_WEBHOOK_URL", default)


def deliver_webhook(
    webhook_url: Optional[str],
    payload: Mapping[str, Any],
    client: httpx.Client | None = None,
) -> bool:
    """POST ``payload`` as JSON; returns whether the receiver accepted it.

    Delivery is best effort. Transport errors and non-2xx answers are logged
    and reported as ``False``; the run itself has already been persisted.
    """
    if not webhook_url:
        return False

    owned = client is None
    http = client or httpx.Client(timeout=DELIVERY_TIMEOUT)
    try:
        http.post(str(webhook_url), json=payload).raise_for_status()
    except httpx.HTTPError as exc:
        logger.warning("Risk summary webhook to %s failed: %s", webhook_url, exc)
        return False
    finally:
        if owned:
            http.close()
    return True
