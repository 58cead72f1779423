#!/usr/bin/env python3
"""Kubeadm Manager module: kubeadm and kubelet configuration objects on the target cluster."""

import copy
from typing import Any, Dict

import yaml

from .exceptions import ConfigurationError, ResourceAlreadyExistsError, ResourceNotFoundError
from .kube_client import KubeClient
from .print_manager import PrintManager
from .utilities import sanitize_object
from .versions import KubernetesVersion

KUBE_SYSTEM_NAMESPACE = "kube-system"
KUBEADM_CONFIG_MAP = "kubeadm-config"
CLUSTER_CONFIGURATION_KEY = "ClusterConfiguration"

RBAC_API_GROUP = "rbac.authorization.k8s.io"
KUBELET_CONFIG_READER_GROUPS = ("system:nodes", "system:bootstrappers:kubeadm:default-node-token")


def kubelet_config_map_name(major: int, minor: int) -> str:
    return f"kubelet-config-{major}.{minor}"


def _exists(client: KubeClient, resource: str, name: str) -> bool:
    try:
        client.get(resource, name, KUBE_SYSTEM_NAMESPACE)
    except ResourceNotFoundError:
        return False
    return True


def update_kubeadm_kubernetes_version(original: Dict[str, Any], version: str) -> Dict[str, Any]:
    """
    Return a copy of the kubeadm-config config map with its kubernetesVersion replaced.

    Only the ClusterConfiguration document is rewritten; it is re-serialized
    with sorted keys in block style, the same layout kubeadm writes.

    Args:
        original: kubeadm-config config map (not modified)
        version: New version, e.g. "v1.14.3"

    Returns:
        dict: Updated copy of the config map

    Raises:
        ConfigurationError: If ClusterConfiguration is missing or not a YAML mapping
    """
    config_map = copy.deepcopy(original)
    data = config_map.get("data") or {}
    if CLUSTER_CONFIGURATION_KEY not in data:
        raise ConfigurationError(f"kubeadm configmap has no {CLUSTER_CONFIGURATION_KEY} key")

    try:
        cluster_config = yaml.safe_load(data[CLUSTER_CONFIGURATION_KEY]) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"error decoding kubeadm configmap {CLUSTER_CONFIGURATION_KEY}: {e}") from e
    if not isinstance(cluster_config, dict):
        raise ConfigurationError(f"kubeadm configmap {CLUSTER_CONFIGURATION_KEY} is not a mapping")

    cluster_config["kubernetesVersion"] = version
    data[CLUSTER_CONFIGURATION_KEY] = yaml.safe_dump(cluster_config, default_flow_style=False)
    config_map["data"] = data
    return config_map


def update_and_upload_kubeadm_kubernetes_version(
    client: KubeClient, version: KubernetesVersion, printer: PrintManager
) -> None:
    """Rewrite kubernetesVersion in the target cluster's kubeadm-config config map to ``v<version>``."""
    printer.print_info(f"Updating {KUBEADM_CONFIG_MAP} to v{version}", namespace=KUBE_SYSTEM_NAMESPACE)
    try:
        original = client.get("configmap", KUBEADM_CONFIG_MAP, KUBE_SYSTEM_NAMESPACE)
    except ResourceNotFoundError as e:
        raise e.with_context("error getting kubeadm configmap from target cluster") from e

    updated = update_kubeadm_kubernetes_version(original, f"v{version}")
    # The replace carries the original resourceVersion, so a concurrent change conflicts
    client.update(updated)
    printer.print_success(f"{KUBEADM_CONFIG_MAP} now records Kubernetes v{version}")


def update_kubelet_config_map_if_needed(client: KubeClient, version: KubernetesVersion, printer: PrintManager) -> None:
    """
    Make sure the versioned kubelet config map for ``version`` exists.

    A missing map is copied from the previous minor version's map, which
    must exist.
    """
    desired_name = kubelet_config_map_name(version.major, version.minor)
    if _exists(client, "configmap", desired_name):
        printer.print_info("kubelet configmap already exists", name=desired_name)
        return

    previous_name = kubelet_config_map_name(version.major, version.minor - 1)
    try:
        previous = client.get("configmap", previous_name, KUBE_SYSTEM_NAMESPACE)
    except ResourceNotFoundError as e:
        raise ConfigurationError(f"unable to find current kubelet configmap {previous_name}") from e

    printer.print_info(f"Creating kubelet configmap {desired_name} from {previous_name}")
    try:
        client.create(sanitize_object(previous, name=desired_name))
    except ResourceAlreadyExistsError:
        printer.print_info("kubelet configmap already exists", name=desired_name)


def _ensure_exists(client: KubeClient, resource: str, obj: Dict[str, Any], printer: PrintManager) -> None:
    name = obj["metadata"]["name"]
    if _exists(client, resource, name):
        printer.print_info(f"{obj['kind']} already exists", name=name)
        return

    printer.print_info(f"Creating {obj['kind']}", name=name, namespace=KUBE_SYSTEM_NAMESPACE)
    try:
        client.create(obj)
    except ResourceAlreadyExistsError:
        printer.print_info(f"{obj['kind']} already exists", name=name)


def update_kubelet_rbac_if_needed(client: KubeClient, version: KubernetesVersion, printer: PrintManager) -> None:
    """Make sure nodes and bootstrap tokens may read the versioned kubelet config map."""
    config_map_name = kubelet_config_map_name(version.major, version.minor)
    role_name = f"kubeadm:{config_map_name}"

    role = {
        "apiVersion": f"{RBAC_API_GROUP}/v1",
        "kind": "Role",
        "metadata": {"name": role_name, "namespace": KUBE_SYSTEM_NAMESPACE},
        "rules": [
            {
                "verbs": ["get"],
                "apiGroups": [""],
                "resources": ["configmaps"],
                "resourceNames": [config_map_name],
            }
        ],
    }
    role_binding = {
        "apiVersion": f"{RBAC_API_GROUP}/v1",
        "kind": "RoleBinding",
        "metadata": {"name": role_name, "namespace": KUBE_SYSTEM_NAMESPACE},
        "subjects": [
            {"apiGroup": RBAC_API_GROUP, "kind": "Group", "name": group} for group in KUBELET_CONFIG_READER_GROUPS
        ],
        "roleRef": {"apiGroup": RBAC_API_GROUP, "kind": "Role", "name": role_name},
    }

    _ensure_exists(client, "role", role, printer)
    _ensure_exists(client, "rolebinding", role_binding, printer)
