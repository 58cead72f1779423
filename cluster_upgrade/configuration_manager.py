#!/usr/bin/env python3
"""Configuration Manager module: builds and validates the upgrade configuration."""

import time
from typing import Any, Dict, Optional

import yaml

from .exceptions import ConfigurationError
from .versions import KubernetesVersion

UPGRADE_MODE_CONTROL_PLANE = "control-plane"
UPGRADE_MODE_MACHINE_DEPLOYMENT = "machine-deployment"
UPGRADE_MODES = (UPGRADE_MODE_CONTROL_PLANE, UPGRADE_MODE_MACHINE_DEPLOYMENT)

DEFAULT_PROVIDER_ID_TIMEOUT = 15 * 60
DEFAULT_MATCHING_NODE_TIMEOUT = 10 * 60
DEFAULT_NODE_READY_TIMEOUT = 15 * 60
DEFAULT_ETCD_TIMEOUT = 60


class MachineOptions:
    """Settings applied to every machine the upgrade creates."""

    def __init__(
        self,
        desired_version: Optional[KubernetesVersion] = None,
        image_id: Optional[str] = None,
        image_field: Optional[str] = None,
    ):
        self.desired_version = desired_version
        self.image_id = image_id
        self.image_field = image_field

    @property
    def has_image_override(self) -> bool:
        return bool(self.image_id and self.image_field)


class WaitSettings:
    """
    Which wait stages a machine replacement blocks on, and for how long.

    Stages run in order: provider ID, matching node, node ready. Disabling a
    stage (flag off or a timeout of 0) also disables every later stage,
    since each depends on the result of the one before.
    """

    def __init__(
        self,
        wait_for_provider_id: bool = True,
        wait_for_matching_node: bool = True,
        wait_for_node_ready: bool = True,
        provider_id_timeout: float = DEFAULT_PROVIDER_ID_TIMEOUT,
        matching_node_timeout: float = DEFAULT_MATCHING_NODE_TIMEOUT,
        node_ready_timeout: float = DEFAULT_NODE_READY_TIMEOUT,
    ):
        self.wait_for_provider_id = wait_for_provider_id
        self.wait_for_matching_node = wait_for_matching_node
        self.wait_for_node_ready = wait_for_node_ready
        self.provider_id_timeout = provider_id_timeout
        self.matching_node_timeout = matching_node_timeout
        self.node_ready_timeout = node_ready_timeout

    def validate(self) -> None:
        for field in ("provider_id_timeout", "matching_node_timeout", "node_ready_timeout"):
            value = getattr(self, field)
            if not isinstance(value, (int, float)) or isinstance(value, bool) or value < 0:
                raise ConfigurationError(f"{field} must be a non-negative number of seconds, got {value!r}")

    @property
    def provider_id_enabled(self) -> bool:
        return self.wait_for_provider_id and self.provider_id_timeout > 0

    @property
    def matching_node_enabled(self) -> bool:
        return self.provider_id_enabled and self.wait_for_matching_node and self.matching_node_timeout > 0

    @property
    def node_ready_enabled(self) -> bool:
        return self.matching_node_enabled and self.wait_for_node_ready and self.node_ready_timeout > 0


class UpgradeConfig:
    """Validated settings for one upgrade run.

    Construct it, then call ``validate()`` once before any cluster access.
    """

    def __init__(
        self,
        cluster_name: str,
        cluster_namespace: str = "default",
        kubernetes_version: Optional[str] = None,
        upgrade_id: Optional[str] = None,
        image_id: Optional[str] = None,
        image_field: Optional[str] = None,
        management_kubeconfig: Optional[str] = None,
        target_kubeconfig: Optional[str] = None,
        mode: str = UPGRADE_MODE_CONTROL_PLANE,
        wait: Optional[WaitSettings] = None,
        etcd_timeout: float = DEFAULT_ETCD_TIMEOUT,
        api_retries: int = 0,
    ):
        self.cluster_name = cluster_name
        self.cluster_namespace = cluster_namespace or "default"
        self.kubernetes_version = kubernetes_version
        self.upgrade_id = upgrade_id or str(int(time.time()))
        self.image_id = image_id
        self.image_field = image_field
        self.management_kubeconfig = management_kubeconfig
        self.target_kubeconfig = target_kubeconfig
        self.mode = mode
        self.wait = wait or WaitSettings()
        self.etcd_timeout = etcd_timeout
        self.api_retries = api_retries
        self.desired_version: Optional[KubernetesVersion] = None

    def validate(self) -> "UpgradeConfig":
        """
        Check every field and parse the desired version.

        Returns:
            UpgradeConfig: self, for chaining

        Raises:
            ConfigurationError: On the first invalid field
        """
        if not self.cluster_name:
            raise ConfigurationError("cluster name is required")
        if self.mode not in UPGRADE_MODES:
            raise ConfigurationError(f"upgrade mode must be one of {', '.join(UPGRADE_MODES)}, got {self.mode!r}")
        if bool(self.image_id) != bool(self.image_field):
            raise ConfigurationError("image id and image field must be given together")
        if self.image_field and not [part for part in self.image_field.split(".") if part]:
            raise ConfigurationError(f"invalid image field {self.image_field!r}")
        if not isinstance(self.etcd_timeout, (int, float)) or self.etcd_timeout <= 0:
            raise ConfigurationError(f"etcd timeout must be a positive number of seconds, got {self.etcd_timeout!r}")
        if not isinstance(self.api_retries, int) or self.api_retries < 0:
            raise ConfigurationError(f"API retries must be a non-negative integer, got {self.api_retries!r}")
        self.wait.validate()

        self.desired_version = KubernetesVersion.parse(self.kubernetes_version) if self.kubernetes_version else None
        return self

    def machine_options(self) -> MachineOptions:
        return MachineOptions(self.desired_version, self.image_id, self.image_field)


def load_config_file(path: str) -> Dict[str, Any]:
    """
    Load a YAML configuration file.

    Args:
        path: Path of the file

    Returns:
        dict: Parsed document, empty if the file is empty

    Raises:
        ConfigurationError: If the file cannot be read or is not a YAML mapping
    """
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigurationError(f"unable to read configuration file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"configuration file {path} is not valid YAML: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"configuration file {path} must contain a mapping")
    return data


def _lookup(data: Dict[str, Any], dotted_path: str) -> Any:
    current: Any = data
    for key in dotted_path.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def _first_set(*values: Any) -> Any:
    return next((value for value in values if value is not None), None)


def build_upgrade_config(args: Any) -> UpgradeConfig:
    """
    Merge command-line arguments over the optional configuration file and validate the result.

    Args:
        args: Parsed arguments from ArgumentsParser

    Returns:
        UpgradeConfig: Validated configuration
    """
    file_data = load_config_file(args.config) if getattr(args, "config", None) else {}

    def setting(arg_name: str, file_path: str, default: Any = None) -> Any:
        return _first_set(getattr(args, arg_name, None), _lookup(file_data, file_path), default)

    wait = WaitSettings(
        wait_for_provider_id=not getattr(args, "skip_provider_id_wait", False),
        wait_for_matching_node=not getattr(args, "skip_matching_node_wait", False),
        wait_for_node_ready=not getattr(args, "skip_node_ready_wait", False),
        provider_id_timeout=setting("provider_id_timeout", "timeouts.providerID", DEFAULT_PROVIDER_ID_TIMEOUT),
        matching_node_timeout=setting("matching_node_timeout", "timeouts.matchingNode", DEFAULT_MATCHING_NODE_TIMEOUT),
        node_ready_timeout=setting("node_ready_timeout", "timeouts.nodeReady", DEFAULT_NODE_READY_TIMEOUT),
    )

    kubernetes_version = setting("kubernetes_version", "kubernetesVersion")
    upgrade_id = setting("upgrade_id", "upgradeID")

    config = UpgradeConfig(
        cluster_name=setting("cluster_name", "targetCluster.name"),
        cluster_namespace=setting("cluster_namespace", "targetCluster.namespace", "default"),
        kubernetes_version=str(kubernetes_version) if kubernetes_version is not None else None,
        upgrade_id=str(upgrade_id) if upgrade_id is not None else None,
        image_id=setting("image_id", "machineUpdates.image.id"),
        image_field=setting("image_field", "machineUpdates.image.field"),
        management_kubeconfig=setting("management_kubeconfig", "managementCluster.kubeconfig"),
        target_kubeconfig=setting("target_kubeconfig", "targetCluster.kubeconfig"),
        mode=setting("mode", "mode", UPGRADE_MODE_CONTROL_PLANE),
        wait=wait,
        etcd_timeout=setting("etcd_timeout", "timeouts.etcd", DEFAULT_ETCD_TIMEOUT),
        api_retries=setting("api_retries", "apiRetries", 0),
    )
    return config.validate()
