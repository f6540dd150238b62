"""Workflow definition parser for YAML format"""
from typing import Dict, Any, List, Optional, Tuple
import yaml

from shared.models import WorkflowDefinition, Trigger, Action, Condition, Delay, new_id
from shared.enums import ActionType, DelayUnit, DOMAIN_EVENTS

BRANCH_TARGET_KEYS = ("trueBranchActionId", "falseBranchActionId")


class WorkflowDefinitionError(Exception):
    """Raised when workflow definition is invalid"""
    pass


def parse_yaml_workflow(yaml_content: str, tenant_id: str) -> WorkflowDefinition:
    """Parse a YAML workflow definition into a WorkflowDefinition.

    Expected YAML format:
    ```yaml
    workflow:
      name: "welcome-new-leads"
      description: "Greet leads and follow up"
      active: true
      triggers:
        - event: "contact.created"
          filters:
            status: "lead"
      actions:
        - ref: "welcome"
          type: "send_email"
          config:
            subject: "Welcome!"
            body: "Thanks for signing up"
          condition: "contact.email is_not_empty"
        - ref: "pause"
          type: "wait"
          config:
            delayType: "days"
            delayValue: 2
        - ref: "check-vip"
          type: "branch"
          config:
            expression: "contact.status equals vip"
            trueBranchActionId: "vip-task"
        - ref: "vip-task"
          type: "create_task"
          delay: {type: "hours", value: 1}
          config:
            title: "Call VIP lead"
    ```

    ``ref`` names an action inside the document; branch targets refer to
    refs and are rewritten to the generated action ids. ``order`` defaults
    to the action's position (starting at 1).

    Args:
        yaml_content: YAML string containing workflow definition
        tenant_id: Tenant the workflow is created for

    Returns:
        WorkflowDefinition: Parsed and validated workflow

    Raises:
        WorkflowDefinitionError: If YAML is invalid or missing required fields
    """
    try:
        data = yaml.safe_load(yaml_content)
    except yaml.YAMLError as e:
        raise WorkflowDefinitionError(f"Invalid YAML: {e}")

    if not isinstance(data, dict):
        raise WorkflowDefinitionError("YAML must contain a dictionary")

    if "workflow" not in data:
        raise WorkflowDefinitionError("YAML must contain 'workflow' key")

    workflow_def = data["workflow"]
    if not isinstance(workflow_def, dict):
        raise WorkflowDefinitionError("'workflow' must be a dictionary")

    if not workflow_def.get("name"):
        raise WorkflowDefinitionError("Workflow must have a 'name'")

    triggers_def = workflow_def.get("triggers", [])
    actions_def = workflow_def.get("actions")
    if not isinstance(triggers_def, list):
        raise WorkflowDefinitionError("Workflow 'triggers' must be a list")
    if not isinstance(actions_def, list) or not actions_def:
        raise WorkflowDefinitionError(
            "Workflow must have a non-empty 'actions' list")

    active = workflow_def.get("active", False)
    if not isinstance(active, bool):
        raise WorkflowDefinitionError("Workflow 'active' must be a boolean")

    triggers = [
        _parse_trigger(trigger_def, idx)
        for idx, trigger_def in enumerate(triggers_def)
    ]

    # Parse actions
    actions = []
    refs: Dict[str, str] = {}
    orders = set()

    for idx, action_def in enumerate(actions_def):
        try:
            action, ref = _parse_action(action_def, idx)
        except (KeyError, ValueError, TypeError) as e:
            raise WorkflowDefinitionError(
                f"Error parsing action at index {idx}: {e}")

        if ref is not None:
            if ref in refs:
                raise WorkflowDefinitionError(f"Duplicate action ref: {ref}")
            refs[ref] = action.id

        if action.order in orders:
            raise WorkflowDefinitionError(
                f"Duplicate action order: {action.order}")
        orders.add(action.order)

        actions.append(action)

    _resolve_branch_targets(actions, refs)

    return WorkflowDefinition(tenant_id=tenant_id,
                              name=str(workflow_def["name"]),
                              description=workflow_def.get("description"),
                              is_active=active,
                              triggers=triggers,
                              actions=actions)


def _parse_trigger(trigger_def: Any, index: int) -> Trigger:
    if not isinstance(trigger_def, dict):
        raise WorkflowDefinitionError(
            f"Trigger at index {index} must be a dictionary")

    event = trigger_def.get("event")
    valid_events = [e.value for e in DOMAIN_EVENTS]
    if event not in valid_events:
        raise WorkflowDefinitionError(
            f"Trigger at index {index} has invalid event '{event}'. "
            f"Valid events: {valid_events}")

    filters = trigger_def.get("filters", {})
    if not isinstance(filters, dict):
        raise WorkflowDefinitionError(
            f"Trigger at index {index} filters must be a dictionary")

    return Trigger(event_type=event, filters=filters)


def _parse_action(action_def: Any, index: int) -> Tuple[Action, Optional[str]]:
    """Parse a single action definition.

    Args:
        action_def: Dictionary containing action definition
        index: Index of action in the workflow (for error reporting)

    Returns:
        The parsed action and its ref (None when the action has no ref)

    Raises:
        WorkflowDefinitionError: If action definition is invalid
    """
    if not isinstance(action_def, dict):
        raise WorkflowDefinitionError(
            f"Action at index {index} must be a dictionary")

    ref = action_def.get("ref")
    label = f"'{ref}'" if ref else f"at index {index}"

    if "type" not in action_def:
        raise WorkflowDefinitionError(f"Action {label} must have a 'type'")

    # Validate action type
    try:
        action_type = ActionType(action_def["type"])
    except ValueError:
        valid_types = [t.value for t in ActionType]
        raise WorkflowDefinitionError(
            f"Action {label} has invalid type '{action_def['type']}'. "
            f"Valid types: {valid_types}")

    order = action_def.get("order", index + 1)
    if not isinstance(order, int) or isinstance(order, bool):
        raise WorkflowDefinitionError(f"Action {label} order must be an integer")

    # Get config (default to empty dict)
    config = action_def.get("config", {})
    if not isinstance(config, dict):
        raise WorkflowDefinitionError(
            f"Action {label} config must be a dictionary")

    condition = None
    if action_def.get("condition") is not None:
        expression = action_def["condition"]
        if not isinstance(expression, str) or not expression.strip():
            raise WorkflowDefinitionError(
                f"Action {label} condition must be a non-empty string")
        condition = Condition(expression=expression)

    delay = None
    if action_def.get("delay") is not None:
        delay = _parse_delay(action_def["delay"], label)

    action = Action(id=new_id(),
                    type=action_type.value,
                    order=order,
                    config=dict(config),
                    condition=condition,
                    delay=delay)
    return action, str(ref) if ref is not None else None


def _parse_delay(delay_def: Any, label: str) -> Delay:
    if not isinstance(delay_def, dict):
        raise WorkflowDefinitionError(
            f"Action {label} delay must be a dictionary")

    try:
        unit = DelayUnit(delay_def.get("type", DelayUnit.MINUTES.value))
    except ValueError:
        valid_units = [u.value for u in DelayUnit]
        raise WorkflowDefinitionError(
            f"Action {label} has invalid delay type '{delay_def.get('type')}'. "
            f"Valid types: {valid_units}")

    value = delay_def.get("value", 1)
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise WorkflowDefinitionError(
            f"Action {label} delay value must be a positive number")

    return Delay(delay_type=unit, delay_value=value)


def _resolve_branch_targets(actions: List[Action], refs: Dict[str, str]):
    """Rewrite branch targets from refs to action ids.

    Raises:
        WorkflowDefinitionError: If a branch points at an undeclared ref
    """
    for action in actions:
        if action.type != ActionType.BRANCH.value:
            continue
        for key in BRANCH_TARGET_KEYS:
            target = action.config.get(key)
            if target is None:
                continue
            target = str(target)
            if target not in refs:
                raise WorkflowDefinitionError(
                    f"Branch action references non-existent action in {key}: "
                    f"'{target}'")
            action.config[key] = refs[target]


def workflow_to_yaml(workflow: WorkflowDefinition) -> str:
    """Convert a WorkflowDefinition to YAML format.

    Action ids are used as refs, so the output parses back into an
    equivalent workflow.

    Args:
        workflow: Workflow to convert

    Returns:
        str: YAML representation of the workflow
    """
    workflow_dict: Dict[str, Any] = {
        "workflow": {
            "name": workflow.name,
            "active": workflow.is_active,
            "triggers": [],
            "actions": []
        }
    }
    if workflow.description:
        workflow_dict["workflow"]["description"] = workflow.description

    for trigger in workflow.triggers:
        trigger_dict: Dict[str, Any] = {"event": trigger.event_type}
        if trigger.filters:
            trigger_dict["filters"] = trigger.filters
        workflow_dict["workflow"]["triggers"].append(trigger_dict)

    for action in workflow.ordered_actions():
        action_dict: Dict[str, Any] = {
            "ref": action.id,
            "type": action.type,
            "order": action.order,
            "config": action.config
        }

        if action.condition:
            action_dict["condition"] = action.condition.expression

        if action.delay:
            action_dict["delay"] = {
                "type": action.delay.delay_type.value,
                "value": action.delay.delay_value
            }

        workflow_dict["workflow"]["actions"].append(action_dict)

    return yaml.dump(workflow_dict, sort_keys=False, default_flow_style=False)
