import logging
import math
from typing import Any

from worker.actions.base import BaseAction, ExecutionContext, ActionResult
from shared.enums import ActionType, DelayUnit, DELAY_UNIT_MS
from shared.expressions import to_number

logger = logging.getLogger(__name__)


def delay_to_ms(value: Any, unit: Any) -> int:
    """Milliseconds for ``value`` units. Unknown units count as minutes."""
    try:
        multiplier = DELAY_UNIT_MS[DelayUnit(unit)]
    except ValueError:
        multiplier = DELAY_UNIT_MS[DelayUnit.MINUTES]
    amount = to_number(value)
    if amount is None or math.isinf(amount):
        amount = 1
    return max(int(amount * multiplier), 0)


class WaitAction(BaseAction):
    """Suspends the current pass; the runner queues the continuation"""

    action_type = ActionType.WAIT

    async def execute(self, context: ExecutionContext) -> ActionResult:
        config = context.action.config
        delay_type = config.get("delayType") or DelayUnit.MINUTES.value
        delay_value = config.get("delayValue", 1)
        delay_ms = delay_to_ms(delay_value, delay_type)

        logger.info(f"[job:{context.job_id}] wait: resuming in {delay_value} "
                    f"{delay_type} ({delay_ms}ms)")
        return ActionResult(suspended=True, resume_in_ms=delay_ms)
