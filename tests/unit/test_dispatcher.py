"""Unit tests for ActionDispatcher"""
import pytest

from worker.actions.base import ExecutionContext, ActionResult
from worker.dispatcher import ActionDispatcher, UnknownActionTypeError
from shared.enums import ActionType
from shared.models import Action


def _context(action_type: str) -> ExecutionContext:
    return ExecutionContext(tenant_id="tenant-1",
                            job_id="job-1",
                            job_run_id="run-1",
                            action=Action(type=action_type, order=1))


@pytest.mark.unit
class TestActionDispatcher:

    def test_standard_set_covers_every_type(
            self, dispatcher: ActionDispatcher) -> None:
        assert set(dispatcher.executors) == set(ActionType)
        for action_type, executor in dispatcher.executors.items():
            assert executor.action_type == action_type

    def test_gap_in_registry_is_rejected(
            self, dispatcher: ActionDispatcher) -> None:
        executors = dict(dispatcher.executors)
        del executors[ActionType.WEBHOOK]

        with pytest.raises(ValueError, match="webhook"):
            ActionDispatcher(executors)

    async def test_unknown_type_raises(self,
                                       dispatcher: ActionDispatcher) -> None:
        with pytest.raises(UnknownActionTypeError) as exc_info:
            await dispatcher.dispatch(_context("send_fax"))

        assert exc_info.value.action_type == "send_fax"

    async def test_dispatch_routes_by_type(
            self, dispatcher: ActionDispatcher) -> None:
        """Test a webhook without url goes to the webhook executor and no-ops"""
        result = await dispatcher.dispatch(_context("webhook"))

        assert result == ActionResult()

    async def test_messaging_executors_share_one_limit(
            self, dispatcher: ActionDispatcher) -> None:
        email = dispatcher.executors[ActionType.SEND_EMAIL]
        sms = dispatcher.executors[ActionType.SEND_SMS]

        assert email.semaphore is sms.semaphore
