"""Client for the workflow automation management API."""
import requests
import time
from pathlib import Path
from typing import List, Dict, Any, Optional
from shared.models import WorkflowDefinition, Trigger, Action
from shared.schemas import RunPage


class WorkflowClient:
    """Client acting for one tenant against the automation API."""

    def __init__(self,
                 tenant_id: str,
                 base_url: str = "http://localhost:8000",
                 timeout: float = 10.0):
        """Initialize the client."""
        self.base_url = base_url
        self.timeout = timeout
        self.session = requests.Session()
        self.session.headers.update({"X-Tenant-Id": tenant_id})

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        response = self.session.request(method,
                                        f"{self.base_url}{path}",
                                        timeout=self.timeout,
                                        **kwargs)
        response.raise_for_status()
        return response

    def create_workflow(self,
                        name: str,
                        description: Optional[str] = None,
                        is_active: bool = False) -> WorkflowDefinition:
        """Create an empty workflow.

        Raises:
            requests.HTTPError: If the API request fails
        """
        response = self._request("POST",
                                 "/workflows",
                                 json={
                                     "name": name,
                                     "description": description,
                                     "is_active": is_active
                                 })
        return WorkflowDefinition.model_validate(response.json())

    def submit_workflow_from_yaml(self, yaml_path: str) -> WorkflowDefinition:
        """Create a workflow from a YAML file.

        Args:
            yaml_path: Path to the YAML workflow definition file

        Returns:
            WorkflowDefinition: The created workflow

        Raises:
            FileNotFoundError: If the YAML file doesn't exist
            requests.HTTPError: If the API request fails
        """
        path = Path(yaml_path)
        if not path.exists():
            raise FileNotFoundError(f"YAML file not found: {yaml_path}")

        response = self._request("POST",
                                 "/workflows/from-yaml",
                                 data=path.read_text(),
                                 headers={"Content-Type": "text/plain"})
        return WorkflowDefinition.model_validate(response.json())

    def get_workflow(self, workflow_id: str) -> WorkflowDefinition:
        response = self._request("GET", f"/workflows/{workflow_id}")
        return WorkflowDefinition.model_validate(response.json())

    def list_workflows(self,
                       is_active: Optional[bool] = None
                       ) -> List[WorkflowDefinition]:
        params = {} if is_active is None else {"is_active": is_active}
        response = self._request("GET", "/workflows", params=params)
        return [WorkflowDefinition.model_validate(wf) for wf in response.json()]

    def activate_workflow(self, workflow_id: str) -> WorkflowDefinition:
        response = self._request("POST", f"/workflows/{workflow_id}/activate")
        return WorkflowDefinition.model_validate(response.json())

    def deactivate_workflow(self, workflow_id: str) -> WorkflowDefinition:
        response = self._request("POST",
                                 f"/workflows/{workflow_id}/deactivate")
        return WorkflowDefinition.model_validate(response.json())

    def delete_workflow(self, workflow_id: str) -> WorkflowDefinition:
        """Soft delete a workflow."""
        response = self._request("DELETE", f"/workflows/{workflow_id}")
        return WorkflowDefinition.model_validate(response.json())

    def add_trigger(self,
                    workflow_id: str,
                    event_type: str,
                    filters: Optional[Dict[str, Any]] = None) -> Trigger:
        response = self._request("POST",
                                 f"/workflows/{workflow_id}/triggers",
                                 json={
                                     "event_type": event_type,
                                     "filters": filters or {}
                                 })
        return Trigger.model_validate(response.json())

    def add_action(self,
                   workflow_id: str,
                   action_type: str,
                   order: int,
                   config: Optional[Dict[str, Any]] = None,
                   condition: Optional[str] = None,
                   delay: Optional[Dict[str, Any]] = None) -> Action:
        """Append an action to a workflow.

        Args:
            workflow_id: Workflow to extend
            action_type: One of the action type names (e.g. "send_email")
            order: Position of the action; must be unique in the workflow
            config: Action configuration
            condition: Optional gating expression
            delay: Optional {"delay_type": ..., "delay_value": ...}

        Returns:
            Action: The stored action

        Raises:
            requests.HTTPError: If the API request fails (409 on a duplicate order)
        """
        body: Dict[str, Any] = {
            "type": action_type,
            "order": order,
            "config": config or {}
        }
        if condition:
            body["condition"] = {"expression": condition}
        if delay:
            body["delay"] = delay
        response = self._request("POST",
                                 f"/workflows/{workflow_id}/actions",
                                 json=body)
        return Action.model_validate(response.json())

    def publish_event(self, event_name: str,
                      payload: Dict[str, Any]) -> Dict[str, Any]:
        """Publish a domain event for this tenant."""
        response = self._request("POST", f"/events/{event_name}", json=payload)
        return response.json()

    def list_runs(self,
                  workflow_id: str,
                  page: int = 1,
                  limit: int = 20) -> RunPage:
        response = self._request("GET",
                                 f"/workflows/{workflow_id}/runs",
                                 params={
                                     "page": page,
                                     "limit": limit
                                 })
        return RunPage.model_validate(response.json())

    def wait_for_runs(self,
                      workflow_id: str,
                      statuses=("completed", "failed", "waiting"),
                      timeout: int = 30,
                      poll_interval: float = 1.0) -> RunPage:
        """Poll until every run of the workflow reaches one of ``statuses``.

        Raises:
            TimeoutError: If the runs don't settle within timeout
        """
        start_time = time.time()
        while time.time() - start_time < timeout:
            runs = self.list_runs(workflow_id)
            if runs.items and all(run.status.value in statuses
                                  for run in runs.items):
                return runs
            time.sleep(poll_interval)

        raise TimeoutError(
            f"Runs of workflow {workflow_id} did not settle within {timeout} seconds")
