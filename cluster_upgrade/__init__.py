#!/usr/bin/env python3
"""
Cluster Upgrade Tool - Modular Components.

This package upgrades the Kubernetes version of a Cluster API managed
cluster. The control plane is upgraded by rolling replacement of its
machines; worker machine deployments are upgraded in place.

Modules:
- print_manager: Handles all output formatting and printing
- exceptions: Error types raised during an upgrade run
- utilities: kubectl execution, polling and object helpers
- versions: Kubernetes version parsing and comparison
- kube_client: kubectl-backed client for the management and target clusters
- arguments_parser: Command-line argument parsing
- configuration_manager: Upgrade configuration loading and validation
- etcd_manager: etcd membership listing, health checking and member removal
- machine_creator: Replacement machine creation and node readiness waits
- kubeadm_manager: kubeadm-config and kubelet config map maintenance
- upgrader_base: State shared by the upgraders
- orchestrator: Rolling control plane replacement and completion handling
- machine_deployment: Worker machine deployment upgrades
"""

from .arguments_parser import ArgumentsParser
from .configuration_manager import MachineOptions, UpgradeConfig, WaitSettings, build_upgrade_config
from .etcd_manager import EtcdManager, EtcdMember, parse_member_list
from .exceptions import (
    CommandTimeoutError,
    ConfigurationError,
    EtcdMemberNotFoundError,
    EtcdMemberParseError,
    HostnameResolutionError,
    KubectlCommandError,
    ResourceAlreadyExistsError,
    ResourceConflictError,
    ResourceNotFoundError,
    UpgradeError,
    WaitTimeoutError,
)
from .kube_client import KubeClient, NodeLister, PodGetter, resolve_target_kubeconfig
from .kubeadm_manager import (
    update_and_upload_kubeadm_kubernetes_version,
    update_kubeadm_kubernetes_version,
    update_kubelet_config_map_if_needed,
    update_kubelet_rbac_if_needed,
)
from .machine_creator import MachineCreator
from .machine_deployment import MachineDeploymentUpgrader
from .orchestrator import (
    ControlPlaneUpgrader,
    create_upgrader,
    handle_successful_completion,
    handle_upgrade_failure,
)
from .print_manager import PrintManager, printer, DEBUG_MODE
from .upgrader_base import UPGRADE_ID_ANNOTATION_KEY
from .utilities import (
    ProviderID,
    execute_kubectl_command,
    format_runtime,
    hostname_for_node,
    poll_immediate,
    retry,
)
from .versions import KubernetesVersion, is_minor_version_upgrade

__all__ = [
    "ArgumentsParser",
    "MachineOptions",
    "UpgradeConfig",
    "WaitSettings",
    "build_upgrade_config",
    "EtcdManager",
    "EtcdMember",
    "parse_member_list",
    "CommandTimeoutError",
    "ConfigurationError",
    "EtcdMemberNotFoundError",
    "EtcdMemberParseError",
    "HostnameResolutionError",
    "KubectlCommandError",
    "ResourceAlreadyExistsError",
    "ResourceConflictError",
    "ResourceNotFoundError",
    "UpgradeError",
    "WaitTimeoutError",
    "KubeClient",
    "NodeLister",
    "PodGetter",
    "resolve_target_kubeconfig",
    "update_and_upload_kubeadm_kubernetes_version",
    "update_kubeadm_kubernetes_version",
    "update_kubelet_config_map_if_needed",
    "update_kubelet_rbac_if_needed",
    "MachineCreator",
    "MachineDeploymentUpgrader",
    "ControlPlaneUpgrader",
    "create_upgrader",
    "handle_successful_completion",
    "handle_upgrade_failure",
    "PrintManager",
    "printer",
    "DEBUG_MODE",
    "UPGRADE_ID_ANNOTATION_KEY",
    "ProviderID",
    "execute_kubectl_command",
    "format_runtime",
    "hostname_for_node",
    "poll_immediate",
    "retry",
    "KubernetesVersion",
    "is_minor_version_upgrade",
]
