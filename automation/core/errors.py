"""Errors raised by the store and the workflow management layer"""


class EntityNotFoundError(Exception):
    """Raised when a tenant-scoped record does not exist"""

    def __init__(self, entity: str, entity_id: str):
        super().__init__(f"{entity} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


class DuplicateActionOrderError(Exception):
    """Raised when two top-level actions of a workflow share an order value"""

    def __init__(self, workflow_id: str, order: int):
        super().__init__(
            f"Workflow {workflow_id} already has an action with order {order}")
        self.workflow_id = workflow_id
        self.order = order


class InvalidWorkflowError(Exception):
    """Raised when a management request would produce an invalid workflow"""
    pass
