from contextlib import contextmanager
from fastapi import APIRouter, HTTPException, Depends, Body, Header, Query
from fastapi.responses import PlainTextResponse
from typing import List, Optional

from shared.models import WorkflowDefinition, Trigger, Action
from shared.schemas import (
    CreateWorkflow,
    UpdateWorkflow,
    CreateTrigger,
    CreateAction,
    UpdateAction,
    RunPage,
    RunWithJob,
)
from automation.utils.workflow_parser import (
    parse_yaml_workflow,
    workflow_to_yaml,
    WorkflowDefinitionError,
)
from automation.core.dependencies import get_workflow_service
from automation.core.errors import (
    EntityNotFoundError,
    DuplicateActionOrderError,
    InvalidWorkflowError,
)
from automation.core.workflows_service import WorkflowService

router = APIRouter(prefix="/workflows", tags=["workflows"])


def get_tenant_id(x_tenant_id: str = Header(..., alias="X-Tenant-Id")) -> str:
    """Tenant the request acts for"""
    if not x_tenant_id.strip():
        raise HTTPException(status_code=400, detail="X-Tenant-Id is required")
    return x_tenant_id


@contextmanager
def service_errors():
    """Translate service exceptions into HTTP errors"""
    try:
        yield
    except EntityNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except DuplicateActionOrderError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except (InvalidWorkflowError, WorkflowDefinitionError) as e:
        raise HTTPException(status_code=400,
                            detail=f"Invalid workflow definition: {e}")


# ============================================================================
# Workflows
# ============================================================================


@router.post("", response_model=WorkflowDefinition, status_code=201)
async def create_workflow(
        request: CreateWorkflow,
        tenant_id: str = Depends(get_tenant_id),
        service: WorkflowService = Depends(get_workflow_service)):
    """Create a new workflow (inactive unless is_active is set)"""
    return await service.create(tenant_id, request)


@router.post("/from-yaml", response_model=WorkflowDefinition, status_code=201)
async def create_workflow_from_yaml(
        yaml_content: str = Body(..., media_type="text/plain"),
        tenant_id: str = Depends(get_tenant_id),
        service: WorkflowService = Depends(get_workflow_service)):
    """Create a complete workflow from a YAML definition

    Example YAML:
    ```yaml
    workflow:
      name: "welcome-new-leads"
      active: true
      triggers:
        - event: "contact.created"
          filters:
            status: "lead"
      actions:
        - type: "send_email"
          config:
            subject: "Welcome!"
            body: "Thanks for signing up"
        - type: "wait"
          config:
            delayType: "days"
            delayValue: 2
        - type: "create_task"
          config:
            title: "Follow up"
    ```
    """
    with service_errors():
        workflow = parse_yaml_workflow(yaml_content, tenant_id)
        return await service.import_definition(workflow)


@router.get("", response_model=List[WorkflowDefinition])
async def list_workflows(
        is_active: Optional[bool] = None,
        tenant_id: str = Depends(get_tenant_id),
        service: WorkflowService = Depends(get_workflow_service)):
    """List the tenant's workflows"""
    return await service.list(tenant_id, is_active)


@router.get("/{workflow_id}", response_model=WorkflowDefinition)
async def get_workflow(workflow_id: str,
                       tenant_id: str = Depends(get_tenant_id),
                       service: WorkflowService = Depends(get_workflow_service)):
    """Get workflow with its triggers and ordered actions"""
    with service_errors():
        return await service.get(tenant_id, workflow_id)


@router.get("/{workflow_id}/yaml", response_class=PlainTextResponse)
async def export_workflow(workflow_id: str,
                          tenant_id: str = Depends(get_tenant_id),
                          service: WorkflowService = Depends(get_workflow_service)):
    """Export a workflow as YAML"""
    with service_errors():
        workflow = await service.get(tenant_id, workflow_id)
    return workflow_to_yaml(workflow)


@router.put("/{workflow_id}", response_model=WorkflowDefinition)
async def update_workflow(
        workflow_id: str,
        request: UpdateWorkflow,
        tenant_id: str = Depends(get_tenant_id),
        service: WorkflowService = Depends(get_workflow_service)):
    with service_errors():
        return await service.update(tenant_id, workflow_id, request)


@router.delete("/{workflow_id}", response_model=WorkflowDefinition)
async def delete_workflow(
        workflow_id: str,
        tenant_id: str = Depends(get_tenant_id),
        service: WorkflowService = Depends(get_workflow_service)):
    """Soft delete a workflow"""
    with service_errors():
        return await service.remove(tenant_id, workflow_id)


@router.post("/{workflow_id}/activate", response_model=WorkflowDefinition)
async def activate_workflow(
        workflow_id: str,
        tenant_id: str = Depends(get_tenant_id),
        service: WorkflowService = Depends(get_workflow_service)):
    with service_errors():
        return await service.activate(tenant_id, workflow_id)


@router.post("/{workflow_id}/deactivate", response_model=WorkflowDefinition)
async def deactivate_workflow(
        workflow_id: str,
        tenant_id: str = Depends(get_tenant_id),
        service: WorkflowService = Depends(get_workflow_service)):
    """Stop matching new events; queued jobs still run"""
    with service_errors():
        return await service.deactivate(tenant_id, workflow_id)


# ============================================================================
# Triggers
# ============================================================================


@router.post("/{workflow_id}/triggers", response_model=Trigger, status_code=201)
async def add_trigger(workflow_id: str,
                      request: CreateTrigger,
                      tenant_id: str = Depends(get_tenant_id),
                      service: WorkflowService = Depends(get_workflow_service)):
    with service_errors():
        return await service.add_trigger(tenant_id, workflow_id, request)


@router.delete("/{workflow_id}/triggers/{trigger_id}", status_code=204)
async def remove_trigger(
        workflow_id: str,
        trigger_id: str,
        tenant_id: str = Depends(get_tenant_id),
        service: WorkflowService = Depends(get_workflow_service)):
    with service_errors():
        await service.remove_trigger(tenant_id, workflow_id, trigger_id)


# ============================================================================
# Actions
# ============================================================================


@router.post("/{workflow_id}/actions", response_model=Action, status_code=201)
async def add_action(workflow_id: str,
                     request: CreateAction,
                     tenant_id: str = Depends(get_tenant_id),
                     service: WorkflowService = Depends(get_workflow_service)):
    """Append an action (with optional condition and delay)"""
    with service_errors():
        return await service.add_action(tenant_id, workflow_id, request)


@router.put("/{workflow_id}/actions/{action_id}", response_model=Action)
async def update_action(
        workflow_id: str,
        action_id: str,
        request: UpdateAction,
        tenant_id: str = Depends(get_tenant_id),
        service: WorkflowService = Depends(get_workflow_service)):
    with service_errors():
        return await service.update_action(tenant_id, workflow_id, action_id,
                                           request)


@router.delete("/{workflow_id}/actions/{action_id}", status_code=204)
async def remove_action(
        workflow_id: str,
        action_id: str,
        tenant_id: str = Depends(get_tenant_id),
        service: WorkflowService = Depends(get_workflow_service)):
    with service_errors():
        await service.remove_action(tenant_id, workflow_id, action_id)


# ============================================================================
# Runs
# ============================================================================


@router.get("/{workflow_id}/runs", response_model=RunPage)
async def list_runs(workflow_id: str,
                    page: int = Query(1, ge=1),
                    limit: int = Query(20, ge=1, le=100),
                    tenant_id: str = Depends(get_tenant_id),
                    service: WorkflowService = Depends(get_workflow_service)):
    """Run history, most recently started first"""
    with service_errors():
        return await service.list_runs(tenant_id, workflow_id, page, limit)


@router.get("/{workflow_id}/runs/{run_id}", response_model=RunWithJob)
async def get_run(workflow_id: str,
                  run_id: str,
                  tenant_id: str = Depends(get_tenant_id),
                  service: WorkflowService = Depends(get_workflow_service)):
    with service_errors():
        return await service.get_run(tenant_id, workflow_id, run_id)
