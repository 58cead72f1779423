#!/usr/bin/env python3
"""Machine Deployment module: in-place version upgrade of worker machine deployments."""

import copy
from typing import Any, Dict, List

from .exceptions import ConfigurationError, UpgradeError
from .kube_client import MACHINE_DEPLOYMENT_RESOURCE
from .upgrader_base import CLUSTER_NAME_LABEL, UPGRADE_ID_ANNOTATION_KEY, UpgraderBase, has_upgrade_id
from .utilities import describe_object, update_machine_spec_image

WORKER_SET_LABEL = "set"
WORKER_SET_VALUE = "node"


class MachineDeploymentUpgrader(UpgraderBase):
    """
    Patches the machine template of every worker machine deployment.

    The machine deployment controller rolls the workers; no machines are
    replaced here. Templates already stamped with the current upgrade ID are
    skipped.
    """

    def upgrade(self) -> None:
        if self.desired_version is None:
            raise ConfigurationError("a desired Kubernetes version is required to upgrade machine deployments")

        machine_deployments = self.list_machine_deployments()
        if not machine_deployments:
            raise ConfigurationError(
                f"found 0 machine deployments for cluster {self.cluster_namespace}/{self.cluster_name}"
            )
        self.printer.print_info(f"Found {len(machine_deployments)} machine deployment(s)")
        self.upgrade_machine_deployments(machine_deployments)

    def list_machine_deployments(self) -> List[Dict[str, Any]]:
        labels = {CLUSTER_NAME_LABEL: self.cluster_name, WORKER_SET_LABEL: WORKER_SET_VALUE}
        self.printer.print_info("Listing machine deployments", namespace=self.cluster_namespace)
        try:
            return self.management_client.list(MACHINE_DEPLOYMENT_RESOURCE, self.cluster_namespace, labels)
        except UpgradeError as e:
            raise e.with_context("error listing machine deployments") from e

    def upgrade_machine_deployments(self, machine_deployments: List[Dict[str, Any]]) -> None:
        for machine_deployment in machine_deployments:
            template_metadata = machine_deployment.get("spec", {}).get("template", {}).get("metadata")
            if has_upgrade_id(template_metadata, self.upgrade_id):
                self.printer.print_info(
                    "Skipping machine deployment already upgraded", name=machine_deployment["metadata"]["name"]
                )
                continue
            try:
                self.update_machine_deployment(machine_deployment)
            except UpgradeError:
                metadata = machine_deployment["metadata"]
                self.printer.print_error(
                    "Failed to update machine deployment", namespace=metadata.get("namespace"), name=metadata["name"]
                )
                raise

    def update_machine_deployment(self, machine_deployment: Dict[str, Any]) -> None:
        """Set the desired version, upgrade ID and image on the machine template with one patch."""
        metadata = machine_deployment["metadata"]
        self.printer.print_info(
            "Updating machine deployment", namespace=metadata.get("namespace"), name=metadata["name"]
        )

        original = copy.deepcopy(machine_deployment)
        modified = copy.deepcopy(machine_deployment)

        template = modified.setdefault("spec", {}).setdefault("template", {})
        template_spec = template.setdefault("spec", {})
        template_spec["version"] = str(self.desired_version)

        # Stamping the template makes every machine it produces carry the upgrade ID
        template_metadata = template.setdefault("metadata", {})
        annotations = template_metadata.get("annotations") or {}
        annotations[UPGRADE_ID_ANNOTATION_KEY] = self.upgrade_id
        template_metadata["annotations"] = annotations

        if self.config.image_id and self.config.image_field:
            update_machine_spec_image(template_spec, self.config.image_field, self.config.image_id)

        try:
            self.management_client.patch_from(MACHINE_DEPLOYMENT_RESOURCE, original, modified, optimistic_lock=True)
        except UpgradeError as e:
            raise e.with_context(f"error patching machinedeployment {describe_object(machine_deployment)}") from e
        self.printer.print_success("Updated machine deployment", name=metadata["name"])
