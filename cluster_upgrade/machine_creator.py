#!/usr/bin/env python3
"""Machine Creator module: creates a replacement machine and waits for its node."""

from typing import Any, Dict, Optional, Tuple

from .configuration_manager import MachineOptions, WaitSettings
from .exceptions import ConfigurationError, HostnameResolutionError, ResourceNotFoundError, UpgradeError
from .kube_client import MACHINE_RESOURCE, KubeClient, NodeLister, PodGetter
from .utilities import ProviderID, hostname_for_node, poll_immediate, sanitize_object, update_machine_spec_image

PROVIDER_ID_POLL_INTERVAL = 5
MATCHING_NODE_POLL_INTERVAL = 5
NODE_READY_POLL_INTERVAL = 15

# Static control plane pods named <component>-<node hostname>, checked in this order
CONTROL_PLANE_COMPONENTS = ("etcd", "kube-apiserver", "kube-scheduler", "kube-controller-manager")
REQUIRED_POD_CONDITIONS = frozenset(("PodScheduled", "Initialized", "Ready", "ContainersReady"))


class MachineCreator:
    """
    Creates one new machine and optionally blocks until its node converges.

    Stages, each of which can be switched off through WaitSettings:
    1. Provider ID - the infrastructure provider assigns a compute identity to the machine
    2. Matching Node - a node with the same provider ID registers in the target cluster
    3. Node Ready - the control plane pods on that node report every required condition
    """

    def __init__(
        self,
        management_client: KubeClient,
        node_lister: NodeLister,
        pod_getter: PodGetter,
        machine_options: MachineOptions,
        wait_settings: Optional[WaitSettings] = None,
        printer=None,
    ):
        """
        Initialize MachineCreator.

        Args:
            management_client: KubeClient for the management cluster
            node_lister: Lists nodes of the target cluster
            pod_getter: Gets kube-system pods of the target cluster by name
            machine_options: Desired version and optional image override
            wait_settings: Which stages to wait for and their timeouts
            printer: Printer instance for output
        """
        self.management_client = management_client
        self.node_lister = node_lister
        self.pod_getter = pod_getter
        self.machine_options = machine_options
        self.wait_settings = wait_settings or WaitSettings()
        self.printer = printer

    def new_machine(
        self, namespace: str, name: str, source: Dict[str, Any]
    ) -> Tuple[Dict[str, Any], Optional[Dict[str, Any]]]:
        """
        Create a copy of ``source`` named ``name`` and wait for it as configured.

        Args:
            namespace: Namespace of the new machine
            name: Name of the new machine
            source: Machine to clone (not modified)

        Returns:
            tuple: (created machine, matched node or None when the node stages were skipped)

        Raises:
            KubectlCommandError: If the machine cannot be created
            WaitTimeoutError: If an enabled stage does not converge in time
            HostnameResolutionError: If the matched node has no hostname
        """
        machine = sanitize_object(source, name=name)
        machine["metadata"]["namespace"] = namespace
        spec = machine.setdefault("spec", {})
        spec.pop("providerID", None)

        if self.machine_options.has_image_override:
            update_machine_spec_image(spec, self.machine_options.image_field, self.machine_options.image_id)

        if self.machine_options.desired_version is None:
            raise ConfigurationError("no desired version set for new machines")
        spec["version"] = str(self.machine_options.desired_version)

        self.printer.print_info("Creating new machine", name=name, namespace=namespace)
        try:
            created = self.management_client.create(machine) or machine
        except UpgradeError as e:
            raise e.with_context(f"error creating machine {namespace}/{name}") from e

        if not self.wait_settings.provider_id_enabled:
            # Created machine without a provider ID and no node since we waited for nothing
            return created, None

        provider_id = self._wait_for_provider_id(namespace, name)
        if not self.wait_settings.matching_node_enabled:
            return created, None

        node = self._wait_for_matching_node(provider_id)
        if not self.wait_settings.node_ready_enabled:
            # Unready node
            return created, node

        self._wait_for_node_ready(node)
        return created, node

    def _wait_for_provider_id(self, namespace: str, name: str) -> str:
        self.printer.print_info("Waiting for machine provider ID", namespace=namespace, name=name)

        def provider_id_assigned():
            machine = self.management_client.get(MACHINE_RESOURCE, name, namespace)
            return machine.get("spec", {}).get("providerID") or None

        provider_id = poll_immediate(
            PROVIDER_ID_POLL_INTERVAL,
            self.wait_settings.provider_id_timeout,
            provider_id_assigned,
            f"provider ID of machine {namespace}/{name}",
        )
        self.printer.print_success("Got provider ID", provider_id=provider_id)
        return provider_id

    def _wait_for_matching_node(self, raw_provider_id: str) -> Dict[str, Any]:
        self.printer.print_info("Waiting for node", provider_id=raw_provider_id)
        provider_id = ProviderID(raw_provider_id)

        def find_node():
            # First match in list order; provider IDs are unique across the fleet
            for node in self.node_lister.list_nodes():
                try:
                    node_id = ProviderID(node.get("spec", {}).get("providerID"))
                except ConfigurationError:
                    continue
                if node_id == provider_id:
                    return node
            return None

        node = poll_immediate(
            MATCHING_NODE_POLL_INTERVAL,
            self.wait_settings.matching_node_timeout,
            find_node,
            f"node with provider ID {raw_provider_id}",
        )
        self.printer.print_success("Found node", name=node["metadata"]["name"])
        return node

    def _wait_for_node_ready(self, node: Dict[str, Any]) -> None:
        node_name = node.get("metadata", {}).get("name", "<unnamed>")
        hostname = hostname_for_node(node)
        if not hostname:
            self.printer.print_error("Unable to find hostname for node", node=node_name)
            raise HostnameResolutionError(f"unable to find hostname for node {node_name}")

        try:
            poll_immediate(
                NODE_READY_POLL_INTERVAL,
                self.wait_settings.node_ready_timeout,
                lambda: self.is_ready(hostname),
                f"control plane components on node {node_name}",
            )
        except UpgradeError as e:
            raise e.with_context(f"components on node {node_name} are not ready") from e
        self.printer.print_success("Control plane components are ready", node=node_name)

    def is_ready(self, hostname: str) -> bool:
        """
        Check the static control plane pods on a node.

        A missing pod or an error reading it counts as not ready for this
        check; it is never raised.

        Args:
            hostname: Hostname of the node

        Returns:
            bool: True when every component pod reports all required conditions
        """
        self.printer.print_action("Component health check for node", hostname=hostname)

        for component in CONTROL_PLANE_COMPONENTS:
            pod_name = f"{component}-{hostname}"
            try:
                pod = self.pod_getter.get_pod(pod_name)
            except ResourceNotFoundError:
                self.printer.print_info("Pod not found yet", pod=pod_name)
                return False
            except UpgradeError as e:
                self.printer.print_warning(f"Error getting pod: {e}", pod=pod_name)
                return False

            found_conditions = {
                condition.get("type")
                for condition in pod.get("status", {}).get("conditions", [])
                if condition.get("status") == "True"
            }
            missing_conditions = REQUIRED_POD_CONDITIONS - found_conditions
            if missing_conditions:
                self.printer.print_info(
                    "Pod is missing some required conditions",
                    pod=pod_name,
                    conditions=",".join(sorted(missing_conditions)),
                )
                return False

        return True
