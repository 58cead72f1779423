#!/usr/bin/env python3
"""Orchestrator module: rolling control plane replacement and run lifecycle handling."""

import copy
import time
from typing import Any, Dict, List, Optional

from .configuration_manager import UPGRADE_MODE_CONTROL_PLANE, UpgradeConfig
from .etcd_manager import EtcdManager
from .exceptions import ConfigurationError, UpgradeError
from .kube_client import MACHINE_RESOURCE, KubeClient, NodeLister, PodGetter, resolve_target_kubeconfig
from .kubeadm_manager import (
    KUBE_SYSTEM_NAMESPACE,
    update_and_upload_kubeadm_kubernetes_version,
    update_kubelet_config_map_if_needed,
    update_kubelet_rbac_if_needed,
)
from .machine_creator import MachineCreator
from .machine_deployment import MachineDeploymentUpgrader
from .upgrader_base import CLUSTER_NAME_LABEL, UPGRADE_ID_ANNOTATION_KEY, UpgraderBase, has_upgrade_id
from .utilities import ProviderID, describe_object, hostname_for_node, sanitize_object
from .versions import KubernetesVersion, is_minor_version_upgrade, min_max_versions

CONTROL_PLANE_LABEL = "cluster.x-k8s.io/control-plane"


def new_machine_name(current_name: str) -> str:
    """
    Derive a timestamped name for the replacement of a machine.

    Machines are expected to be named <name>-<index> or <name>-<index>-<timestamp>;
    the replacement is <name>-<index>-<unix time>.

    Raises:
        ConfigurationError: If the name has fewer than two hyphen-separated parts
    """
    name_parts = current_name.split("-")
    if len(name_parts) < 2:
        raise ConfigurationError(
            f"machine name {current_name!r} does not match expected format <name>-<index> or <name>-<index>-<timestamp>"
        )
    return f"{name_parts[0]}-{name_parts[1]}-{int(time.time())}"


class ControlPlaneUpgrader(UpgraderBase):
    """
    Replaces every control plane machine of a cluster, one at a time.

    Per machine: clone its infrastructure and bootstrap objects, create the
    replacement machine and wait for it, remove the old etcd member, delete
    the old machine and stamp the replacement with the upgrade ID. Machines
    already stamped with the current upgrade ID are skipped, so a failed run
    can be resumed by running it again with the same ID.
    """

    TOTAL_STEPS = 6

    def __init__(
        self,
        config: UpgradeConfig,
        management_client: KubeClient,
        target_client: KubeClient,
        printer=None,
        etcd_manager: Optional[EtcdManager] = None,
        machine_creator: Optional[MachineCreator] = None,
    ) -> None:
        super().__init__(config, management_client, target_client, printer)
        self.etcd_manager = etcd_manager or EtcdManager(target_client, self.printer, config.etcd_timeout)
        self.machine_creator = machine_creator
        self.old_node_to_etcd_member: Dict[str, str] = {}

    def upgrade(self) -> None:
        self.printer.print_step(1, self.TOTAL_STEPS, "Listing control plane machines")
        machines = self.list_machines()
        if not machines:
            raise ConfigurationError(
                f"found 0 control plane machines for cluster {self.cluster_namespace}/{self.cluster_name}"
            )
        self.printer.print_info(f"Found {len(machines)} control plane machine(s)")

        self.printer.print_step(2, self.TOTAL_STEPS, "Determining current control plane versions")
        min_version, max_version = self.min_max_control_plane_versions(machines)
        self.printer.print_info(f"Current versions: min={min_version} max={max_version}")
        if self.desired_version is None:
            if max_version is None:
                raise ConfigurationError("no machine has a version set and no desired version was given")
            # Default the desired version to the newest one already running
            self.desired_version = max_version
        self.printer.print_info(f"Desired version: {self.desired_version}")

        self.printer.print_step(3, self.TOTAL_STEPS, "Checking kubelet configuration")
        if min_version is not None and is_minor_version_upgrade(min_version, self.desired_version):
            update_kubelet_config_map_if_needed(self.target_client, self.desired_version, self.printer)
            update_kubelet_rbac_if_needed(self.target_client, self.desired_version, self.printer)
        else:
            self.printer.print_info("Not a minor version upgrade, kubelet configuration is current")

        self.printer.print_step(4, self.TOTAL_STEPS, "Checking etcd cluster health")
        self.etcd_manager.health_check()

        self.printer.print_step(5, self.TOTAL_STEPS, "Replacing control plane machines")
        self.update_provider_ids_to_nodes()
        self.update_machines(machines)

        self.printer.print_step(6, self.TOTAL_STEPS, "Updating kubeadm configuration")
        update_and_upload_kubeadm_kubernetes_version(self.target_client, self.desired_version, self.printer)

    def list_machines(self) -> List[Dict[str, Any]]:
        labels = {CLUSTER_NAME_LABEL: self.cluster_name, CONTROL_PLANE_LABEL: "true"}
        self.printer.print_action("Listing machines", namespace=self.cluster_namespace, labels=labels)
        try:
            return self.management_client.list(MACHINE_RESOURCE, self.cluster_namespace, labels)
        except UpgradeError as e:
            raise e.with_context("error listing machines") from e

    def min_max_control_plane_versions(self, machines: List[Dict[str, Any]]):
        """
        Compute the lowest and highest version across machines.

        Machines with an empty version are left out.

        Returns:
            tuple: (min, max) KubernetesVersion, both None if no machine has a version

        Raises:
            ConfigurationError: If a machine's version cannot be parsed
        """
        versions = []
        for machine in machines:
            raw_version = machine.get("spec", {}).get("version")
            if not raw_version:
                continue
            try:
                versions.append(KubernetesVersion.parse(raw_version))
            except ConfigurationError as e:
                raise ConfigurationError(
                    f"invalid control plane version {raw_version!r} for machine {describe_object(machine)}"
                ) from e
        return min_max_versions(versions)

    def update_machines(self, machines: List[Dict[str, Any]]) -> None:
        """Replace each outdated machine in list order."""
        # etcd member IDs cannot be recovered once the old machines are gone
        self.old_node_to_etcd_member = self.etcd_manager.map_hostnames_to_member_ids()

        machine_creator = self.machine_creator or self._new_machine_creator()

        for machine in machines:
            metadata = machine.get("metadata", {})
            name = metadata.get("name")
            if has_upgrade_id(metadata, self.upgrade_id):
                self.printer.print_info("Skipping machine already upgraded", name=name, upgrade_id=self.upgrade_id)
                continue
            if not machine.get("spec", {}).get("providerID"):
                self.printer.print_warning("Unable to upgrade machine as it has no spec.providerID", name=name)
                continue

            new_name = new_machine_name(name)
            namespace = metadata.get("namespace") or self.cluster_namespace
            self.printer.print_header(f"Replacing machine {name} with {new_name}")

            replacement_source = copy.deepcopy(machine)
            spec = replacement_source["spec"]
            spec["infrastructureRef"] = self.clone_object_reference(new_name, spec.get("infrastructureRef"), namespace)
            config_ref = spec.get("bootstrap", {}).get("configRef")
            if config_ref:
                spec["bootstrap"]["configRef"] = self.clone_object_reference(new_name, config_ref, namespace)

            self.update_machine(new_name, machine, replacement_source, machine_creator)

    def clone_object_reference(
        self, name: str, ref: Optional[Dict[str, Any]], default_namespace: str
    ) -> Dict[str, Any]:
        """
        Copy the object a reference points to under a new name and return the new reference.

        The copy loses its server-populated metadata, owner references and
        any spec.providerID so the infrastructure provider treats it as new.
        """
        if not ref:
            raise ConfigurationError(f"machine replaced by {name} has no infrastructure reference")

        new_ref = dict(ref)
        new_ref["namespace"] = ref.get("namespace") or default_namespace
        try:
            original = self.management_client.get_reference(new_ref)
        except UpgradeError as e:
            raise e.with_context(f"error getting {ref.get('kind')} {new_ref['namespace']}/{ref.get('name')}") from e

        clone = sanitize_object(original, name=name)
        clone["metadata"].pop("ownerReferences", None)
        clone.get("spec", {}).pop("providerID", None)

        self.printer.print_info(f"Creating {ref.get('kind')}", name=name, namespace=new_ref["namespace"])
        try:
            self.management_client.create(clone)
        except UpgradeError as e:
            raise e.with_context(f"error creating {ref.get('kind')} {new_ref['namespace']}/{name}") from e

        new_ref.pop("resourceVersion", None)
        new_ref.pop("uid", None)
        new_ref["name"] = name
        return new_ref

    def update_machine(
        self,
        new_name: str,
        old_machine: Dict[str, Any],
        replacement_source: Dict[str, Any],
        machine_creator: MachineCreator,
    ) -> None:
        original_provider_id = ProviderID(old_machine["spec"]["providerID"])

        old_node = self.get_node_from_provider_id(original_provider_id)
        if old_node is None:
            self.printer.print_error("Couldn't retrieve old node", provider_id=original_provider_id)
            raise ConfigurationError(f"unknown previous node {original_provider_id}")
        old_hostname = hostname_for_node(old_node)

        namespace = old_machine["metadata"].get("namespace") or self.cluster_namespace
        new_machine, node = machine_creator.new_machine(namespace, new_name, replacement_source)
        node_hostname = hostname_for_node(node)

        # The new node joined the cluster, keep the index current
        self.update_provider_ids_to_nodes()

        member_id = self.old_node_to_etcd_member.get(old_hostname)
        try:
            self.etcd_manager.remove_member(node_hostname, member_id)
        except UpgradeError as e:
            raise e.with_context(f"unable to delete old etcd member {member_id}") from e

        self.delete_machine(old_machine)
        self.apply_annotation(new_machine)
        self.printer.print_success(f"Replaced machine {old_machine['metadata']['name']} with {new_name}")

    def delete_machine(self, machine: Dict[str, Any]) -> None:
        metadata = machine["metadata"]
        self.printer.print_info("Deleting existing machine", namespace=metadata.get("namespace"), name=metadata["name"])
        try:
            self.management_client.delete(MACHINE_RESOURCE, metadata["name"], metadata.get("namespace"), "foreground")
        except UpgradeError as e:
            raise e.with_context(f"error deleting machine {describe_object(machine)}") from e

    def apply_annotation(self, machine: Dict[str, Any]) -> None:
        original = copy.deepcopy(machine)
        modified = copy.deepcopy(machine)
        annotations = modified["metadata"].get("annotations") or {}
        annotations[UPGRADE_ID_ANNOTATION_KEY] = self.upgrade_id
        modified["metadata"]["annotations"] = annotations

        try:
            self.management_client.patch_from(MACHINE_RESOURCE, original, modified)
        except UpgradeError as e:
            raise e.with_context(f"error annotating machine {describe_object(machine)}") from e

    def _new_machine_creator(self) -> MachineCreator:
        options = self.config.machine_options()
        options.desired_version = self.desired_version
        return MachineCreator(
            self.management_client,
            NodeLister(self.target_client),
            PodGetter(self.target_client, KUBE_SYSTEM_NAMESPACE),
            options,
            self.config.wait,
            self.printer,
        )


def create_upgrader(config: UpgradeConfig, printer: Any) -> UpgraderBase:
    """
    Build the upgrader for the configured mode, connecting to the clusters it needs.

    The control plane upgrader also needs the target cluster; without an
    explicit kubeconfig it is read from the cluster's kubeconfig secret.
    """
    management_client = KubeClient(config.management_kubeconfig, printer, config.api_retries)
    if config.mode != UPGRADE_MODE_CONTROL_PLANE:
        return MachineDeploymentUpgrader(config, management_client, printer=printer)

    temporary_kubeconfig = None
    target_kubeconfig = config.target_kubeconfig
    if not target_kubeconfig:
        target_kubeconfig = temporary_kubeconfig = resolve_target_kubeconfig(
            management_client, config.cluster_name, config.cluster_namespace, printer
        )

    target_client = KubeClient(target_kubeconfig, printer, config.api_retries)
    upgrader = ControlPlaneUpgrader(config, management_client, target_client, printer)
    upgrader.temporary_kubeconfig = temporary_kubeconfig
    return upgrader


def handle_successful_completion(cluster_name: str, mode: str, start_time: float, printer: Any, format_runtime: Any):
    """
    Report a finished upgrade run.

    Args:
        cluster_name: Name of the upgraded cluster
        mode: Upgrade mode that ran
        start_time: Start time of the run
        printer: PrintManager instance for output formatting
        format_runtime: Function to format time duration
    """
    total_runtime = format_runtime(start_time, time.time())

    printer.print_header(f"{mode} upgrade of cluster '{cluster_name}' completed successfully!")
    if mode == UPGRADE_MODE_CONTROL_PLANE:
        printer.print_success("Every control plane machine runs the desired version")
    else:
        printer.print_success("Every machine deployment template carries the desired version")
        printer.print_info("Worker machines are rolled out by the machine deployment controller")

    printer.print_info(f"Total runtime: {total_runtime}")


def handle_upgrade_failure(error_msg: str, format_runtime: Any, start_time: float, printer: Any) -> None:
    """
    Report a failed upgrade run.

    Args:
        error_msg: Error message describing what went wrong
        format_runtime: Function to format time duration
        start_time: Start time of the run
        printer: PrintManager instance for output formatting
    """
    total_runtime = format_runtime(start_time, time.time())
    printer.print_error(f"Upgrade failed: {error_msg}")
    printer.print_error(f"Total runtime before failure: {total_runtime}")
    printer.print_info("Check the logs above for specific error details")
    printer.print_info("Re-run with the same upgrade ID to resume; machines already replaced are skipped")
