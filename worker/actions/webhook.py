import logging

import httpx

from worker.actions.base import BaseAction, ExecutionContext, ActionResult
from shared.enums import ActionType

logger = logging.getLogger(__name__)

DEFAULT_WEBHOOK_TIMEOUT = 10.0


class WebhookAction(BaseAction):
    """POSTs the job context to an external URL.

    Delivery is best effort: transport errors and non-2xx responses are
    logged and the run carries on.
    """

    action_type = ActionType.WEBHOOK

    def __init__(self, timeout: float = DEFAULT_WEBHOOK_TIMEOUT):
        self.timeout = timeout

    async def execute(self, context: ExecutionContext) -> ActionResult:
        config = context.action.config
        url = str(config.get("url") or "")
        if not url:
            logger.warning(f"[job:{context.job_id}] webhook: missing 'url' config")
            return ActionResult()

        body = {
            "tenantId": context.tenant_id,
            "jobId": context.job_id,
            "actionId": context.action.id,
            "triggerPayload": context.trigger_payload,
        }
        extra = config.get("extraData")
        if isinstance(extra, dict):
            body.update(extra)

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(url, json=body)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.error(f"[job:{context.job_id}] webhook -> {url} failed: {e}")
            return ActionResult()

        if response.is_success:
            logger.info(f"[job:{context.job_id}] webhook -> {url} OK "
                        f"({response.status_code})")
        else:
            logger.warning(f"[job:{context.job_id}] webhook -> {url} responded "
                           f"{response.status_code}")
        return ActionResult()
