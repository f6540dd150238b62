"""Contract shared by every action executor"""
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from shared.expressions import EvaluationContext
from shared.models import Action


class ExecutionContext(BaseModel):
    """What an executor gets to see for one action of one run"""
    tenant_id: str
    job_id: str
    job_run_id: str
    trigger_payload: Dict[str, Any] = Field(default_factory=dict)
    action: Action


class ActionResult(BaseModel):
    """Outcome reported back to the runner.

    ``suspended`` means the current pass must stop; the runner records the
    run as waiting and then queues a continuation that resumes after this
    action once ``resume_in_ms`` has passed. ``branch_outcome``/
    ``next_action_id`` are set by branch actions only.
    """
    suspended: bool = False
    resume_in_ms: int = 0
    branch_outcome: Optional[bool] = None
    next_action_id: Optional[str] = None


class BaseAction:

    # Filled in by subclasses with the ActionType they handle
    action_type = None

    async def execute(self, context: ExecutionContext) -> ActionResult:
        """Execute the action. To be implemented by subclasses."""
        raise NotImplementedError(
            "Execute method must be implemented by subclasses.")


def resolve_param(context: ExecutionContext, key: str, default: Any = None) -> Any:
    """Config value, else the same-named trigger payload field, else default"""
    value = context.action.config.get(key)
    if value is None or value == "":
        value = context.trigger_payload.get(key)
    if value is None or value == "":
        return default
    return value


async def load_evaluation_context(store, tenant_id: str, job_id: str,
                                  payload: Dict[str, Any]) -> EvaluationContext:
    """Evaluation context with the payload's contact and opportunity loaded.

    ``contactId``/``opportunityId`` in the trigger payload select the
    records; a record that does not exist in the tenant is left out.
    """
    contact = None
    contact_id = payload.get("contactId")
    if contact_id:
        record = await store.get_contact(tenant_id, str(contact_id))
        if record is not None:
            contact = _wire_view(record)

    opportunity = None
    opportunity_id = payload.get("opportunityId")
    if opportunity_id:
        record = await store.get_opportunity(tenant_id, str(opportunity_id))
        if record is not None:
            opportunity = _wire_view(record)

    return EvaluationContext(tenant_id=tenant_id,
                             job_id=job_id,
                             trigger_payload=payload,
                             contact=contact,
                             opportunity=opportunity)


def _wire_view(record: BaseModel) -> Dict[str, Any]:
    """Record fields under camelCase keys (``contact.firstName``)"""
    data = record.model_dump(mode="json")
    return {_camel(k): v for k, v in data.items()}


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)
