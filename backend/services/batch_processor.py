"""
Bulk send helper: split recipients into batches, run each batch
concurrently, pause between batches.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

logger = logging.getLogger("batch_processor")

DEFAULT_BATCH_SIZE = 1000
DEFAULT_DELAY_MS = 500
MAX_ERRORS_RETURNED = 50


def chunk(items: List[Any], size: int) -> List[List[Any]]:
    if size < 1:
        raise ValueError("batch size must be >= 1")
    return [items[i:i + size] for i in range(0, len(items), size)]


async def process_in_batches(
    items: List[Any],
    handler: Callable[[Any], Awaitable[Dict]],
    batch_size: int = DEFAULT_BATCH_SIZE,
    delay_ms: int = DEFAULT_DELAY_MS,
    on_batch: Optional[Callable[[int, List[Any], List[Dict]], Awaitable[None]]] = None,
) -> Dict[str, Any]:
    """
    handler(item) returns {"success": bool, "error"?: str}.
    A raised exception counts as a failure for that item.
    on_batch(index, batch, outcomes) runs after each batch, with one
    {"success", "error"} outcome per item of the batch.
    """
    started = time.monotonic()
    batches = chunk(items, batch_size) if items else []
    success_count = 0
    failure_count = 0
    errors: List[Dict[str, Any]] = []

    for index, batch in enumerate(batches):
        results = await asyncio.gather(*(handler(item) for item in batch), return_exceptions=True)

        outcomes = []
        for item, result in zip(batch, results):
            if isinstance(result, Exception):
                outcome = {"success": False, "error": str(result)}
            elif result and result.get("success"):
                outcome = {"success": True, "error": None}
            else:
                outcome = {"success": False, "error": (result or {}).get("error", "Unknown error")}
            outcomes.append(outcome)

            if outcome["success"]:
                success_count += 1
            else:
                failure_count += 1
                errors.append({"item": item, "error": outcome["error"]})

        if on_batch:
            await on_batch(index, batch, outcomes)

        logger.info(f"[BATCH] {index + 1}/{len(batches)} done ({len(batch)} items)")

        if index < len(batches) - 1 and delay_ms > 0:
            await asyncio.sleep(delay_ms / 1000)

    total_time_ms = int((time.monotonic() - started) * 1000)
    return {
        "total_processed": len(items),
        "batches_processed": len(batches),
        "success_count": success_count,
        "failure_count": failure_count,
        "total_time_ms": total_time_ms,
        "avg_time_per_contact_ms": round(total_time_ms / len(items), 2) if items else 0,
        "errors": errors[:MAX_ERRORS_RETURNED],
    }
