#!/usr/bin/env python3
"""Upgrader Base module: state and helpers shared by the control plane and worker upgraders."""

import os
from typing import Any, Dict, Optional

from .configuration_manager import UpgradeConfig
from .exceptions import ConfigurationError
from .kube_client import KubeClient
from .print_manager import printer as default_printer
from .utilities import ProviderID

# Annotation recording the upgrade that produced a machine or machine template
UPGRADE_ID_ANNOTATION_KEY = "upgrade-id"

CLUSTER_NAME_LABEL = "cluster.x-k8s.io/cluster-name"


def has_upgrade_id(metadata: Optional[Dict[str, Any]], upgrade_id: str) -> bool:
    """True when the object metadata carries the annotation for this exact upgrade ID."""
    annotations = (metadata or {}).get("annotations") or {}
    return annotations.get(UPGRADE_ID_ANNOTATION_KEY) == upgrade_id


class UpgraderBase:
    """Holds the configuration, cluster clients and provider ID to node index of one upgrade run."""

    def __init__(
        self,
        config: UpgradeConfig,
        management_client: KubeClient,
        target_client: Optional[KubeClient] = None,
        printer=None,
    ) -> None:
        """
        Initialize the upgrader.

        Args:
            config: Validated upgrade configuration
            management_client: KubeClient for the management cluster holding the Cluster API objects
            target_client: KubeClient for the cluster being upgraded
            printer: PrintManager instance for output formatting
        """
        self.config = config
        self.management_client = management_client
        self.target_client = target_client
        self.printer = printer or default_printer

        self.cluster_name = config.cluster_name
        self.cluster_namespace = config.cluster_namespace
        self.upgrade_id = config.upgrade_id
        self.desired_version = config.desired_version

        self.provider_ids_to_nodes: Dict[ProviderID, Dict[str, Any]] = {}
        # Set when the target kubeconfig was written from the cluster's secret
        self.temporary_kubeconfig: Optional[str] = None

    def update_provider_ids_to_nodes(self) -> None:
        """Rebuild the provider ID to node index from the target cluster's current nodes."""
        self.printer.print_action("Updating provider ID to node index")
        index = {}
        for node in self.target_client.list("nodes"):
            node_name = node.get("metadata", {}).get("name")
            try:
                provider_id = ProviderID(node.get("spec", {}).get("providerID"))
            except ConfigurationError as e:
                self.printer.print_warning(f"Ignoring node without a usable provider ID: {e}", node=node_name)
                continue
            index[provider_id] = node
        self.provider_ids_to_nodes = index

    def get_node_from_provider_id(self, provider_id: ProviderID) -> Optional[Dict[str, Any]]:
        return self.provider_ids_to_nodes.get(provider_id)

    def cleanup(self) -> None:
        if self.temporary_kubeconfig and os.path.exists(self.temporary_kubeconfig):
            os.remove(self.temporary_kubeconfig)
            self.printer.print_action("Removed temporary kubeconfig", path=self.temporary_kubeconfig)
        self.temporary_kubeconfig = None

    def upgrade(self) -> None:
        raise NotImplementedError
