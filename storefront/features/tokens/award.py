"""
Opportunistic purchase-token award.

Fired on page load as a background task. Its outcome never feeds into
entitlement resolution; failures are logged and dropped.
"""
import asyncio
import logging
from typing import Optional, Set

from storefront.features.billing.provider import BackendProvider, UpstreamError

logger = logging.getLogger(__name__)

# Strong references so pending tasks are not garbage collected mid-flight
_background_tasks: Set[asyncio.Task] = set()


async def award_pending_tokens(provider: BackendProvider) -> Optional[int]:
    """Run one award pass. Returns the number awarded, or None on failure."""
    try:
        awarded = await provider.award_pending_tokens()
    except UpstreamError as e:
        logger.warning(
            "tokens.award_pending.failed",
            extra={"status": e.status_code, "error_code": "award_pending_failed"},
        )
        return None
    except Exception:
        logger.exception("tokens.award_pending.error")
        return None

    if awarded:
        logger.info("tokens.award_pending.ok", extra={"event_type": "awarded", "status": awarded})
    return awarded


def schedule_award_pending(provider: BackendProvider) -> asyncio.Task:
    """Fire and forget an award pass on the running loop."""
    task = asyncio.get_running_loop().create_task(award_pending_tokens(provider))
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task


def pending_tasks() -> Set[asyncio.Task]:
    return set(_background_tasks)
