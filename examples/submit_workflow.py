#!/usr/bin/env python3
"""Example script: import a workflow from YAML, fire an event, watch its runs."""

import argparse
import sys
from pathlib import Path

from client.workflow_client import WorkflowClient


def main():
    """Import a workflow from a YAML file and trigger it once."""
    # Parse command-line arguments
    parser = argparse.ArgumentParser(
        description="Import a workflow from YAML and trigger it with an event")
    parser.add_argument(
        "workflow_file",
        nargs="?",
        default="welcome-new-leads.yaml",
        help="Workflow definition filename (default: welcome-new-leads.yaml)")
    parser.add_argument("--tenant", default="demo-tenant", help="Tenant id")
    args = parser.parse_args()

    # Initialize client
    client = WorkflowClient(args.tenant, base_url="http://localhost:8000")

    # Path to the workflow definition
    yaml_path = Path(
        __file__).parent / "workflow_definitions" / args.workflow_file

    print(f"Importing workflow from: {yaml_path}")

    try:
        workflow = client.submit_workflow_from_yaml(str(yaml_path))
        if not workflow.is_active:
            workflow = client.activate_workflow(workflow.id)
        print(f"\n✓ Workflow imported!")
        print(f"  ID: {workflow.id}")
        print(f"  Name: {workflow.name}")
        print(f"  Triggers: {[t.event_type for t in workflow.triggers]}")
        print(f"  Actions: {[a.type for a in workflow.actions]}")

        event = workflow.triggers[0].event_type
        print(f"\nPublishing {event}...")
        client.publish_event(
            event, {
                "contactId": "demo-contact",
                "status": "lead",
                "to": "lead@example.com",
            })

        print("\nWaiting for runs...")
        runs = client.wait_for_runs(workflow.id)
        for run in runs.items:
            print(f"  - run {run.id} (attempt {run.attempt}): {run.status.value}"
                  f"{' - ' + run.error if run.error else ''}")

    except FileNotFoundError as e:
        print(f"✗ Error: {e}")
        return 1
    except Exception as e:
        print(f"✗ Error: {e}")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
