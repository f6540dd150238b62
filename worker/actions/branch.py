"""Branch action: picks the next action from an expression.

Config shape::

    expression: "contact.email contains '@gmail.com'"
    trueBranchActionId: <action id to run next when true>
    falseBranchActionId: <action id to run next when false>

The outcome is returned to the runner; the action's config is never
modified.
"""
import logging

from worker.actions.base import (
    BaseAction,
    ExecutionContext,
    ActionResult,
    load_evaluation_context,
)
from shared.enums import ActionType
from shared.expressions import evaluate

logger = logging.getLogger(__name__)


class BranchAction(BaseAction):
    action_type = ActionType.BRANCH

    def __init__(self, store):
        self.store = store

    async def execute(self, context: ExecutionContext) -> ActionResult:
        config = context.action.config
        expression = str(config.get("expression") or "")
        if not expression:
            logger.warning(
                f"[job:{context.job_id}] branch: missing 'expression' config")
            return ActionResult()

        evaluation_context = await load_evaluation_context(
            self.store, context.tenant_id, context.job_id,
            context.trigger_payload)
        outcome = evaluate(expression, evaluation_context)
        next_id = config.get(
            "trueBranchActionId" if outcome else "falseBranchActionId")

        logger.info(f"[job:{context.job_id}] branch: expression=\"{expression}\" "
                    f"-> {outcome} -> nextActionId={next_id or 'none'}")
        return ActionResult(branch_outcome=outcome,
                            next_action_id=str(next_id) if next_id else None)
