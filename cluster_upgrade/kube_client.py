#!/usr/bin/env python3
"""Kube Client module: kubectl-backed access to the management and target clusters."""

import base64
import json
import os
import tempfile
from typing import Any, Callable, Dict, List, Optional, Tuple

from .exceptions import ConfigurationError, ResourceNotFoundError
from .utilities import create_merge_patch, execute_kubectl_command

# Cluster API resources on the management cluster
MACHINE_RESOURCE = "machines.cluster.x-k8s.io"
MACHINE_DEPLOYMENT_RESOURCE = "machinedeployments.cluster.x-k8s.io"


def resource_for_reference(ref: Dict[str, Any]) -> str:
    """
    Build the kubectl resource name for an object reference.

    Args:
        ref: Object reference with 'kind' and optional 'apiVersion'

    Returns:
        str: e.g. 'awsmachine.v1alpha2.infrastructure.cluster.x-k8s.io', or 'configmap' for core kinds
    """
    kind = ref.get("kind")
    if not kind:
        raise ConfigurationError(f"object reference {ref.get('name', '<unnamed>')!r} has no kind")

    api_version = ref.get("apiVersion", "v1")
    if "/" not in api_version:
        return kind.lower()
    group, version = api_version.split("/", 1)
    return f"{kind.lower()}.{version}.{group}"


class KubeClient:
    """Object CRUD, listing and pod exec against one cluster through kubectl.

    Objects are plain dicts exactly as kubectl returns them with ``-o json``.
    """

    def __init__(
        self,
        kubeconfig: Optional[str] = None,
        printer: Optional[Any] = None,
        max_retries: int = 0,
        execute_kubectl_command: Callable[..., Any] = execute_kubectl_command,
    ) -> None:
        """Initialize KubeClient.

        Args:
            kubeconfig: Path to the kubeconfig for the cluster, None for kubectl's default
            printer: PrintManager instance for formatted output
            max_retries: Retries for connectivity failures on each read (get and list)
            execute_kubectl_command: Function that runs kubectl
        """
        self.kubeconfig = kubeconfig
        self.printer = printer
        self.max_retries = max_retries
        self.execute_kubectl_command = execute_kubectl_command

    def _run(self, command: List[str], retry: bool = False, **kwargs: Any) -> Any:
        # Only reads are retried; writes and pod exec run once
        max_retries = self.max_retries if retry else 0
        return self.execute_kubectl_command(
            command, kubeconfig=self.kubeconfig, printer=self.printer, max_retries=max_retries, **kwargs
        )

    @staticmethod
    def _namespace_args(namespace: Optional[str]) -> List[str]:
        return ["-n", namespace] if namespace else []

    def get(self, resource: str, name: str, namespace: Optional[str] = None) -> Dict[str, Any]:
        """Get one object. Raises ResourceNotFoundError if it does not exist."""
        return self._run(["get", resource, name, *self._namespace_args(namespace)], json_output=True, retry=True)

    def list(
        self, resource: str, namespace: Optional[str] = None, label_selector: Optional[Dict[str, str]] = None
    ) -> List[Dict[str, Any]]:
        """List objects, optionally filtered by namespace and an equality label selector."""
        command = ["get", resource, *self._namespace_args(namespace)]
        if label_selector:
            command += ["-l", ",".join(f"{key}={value}" for key, value in label_selector.items())]
        result = self._run(command, json_output=True, retry=True)
        return result.get("items", []) if result else []

    def create(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        """Create an object and return it as stored by the API server."""
        return self._run(["create", "-f", "-"], json_output=True, input_data=json.dumps(obj))

    def update(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        """Replace an object; a stale metadata.resourceVersion raises ResourceConflictError."""
        return self._run(["replace", "-f", "-"], json_output=True, input_data=json.dumps(obj))

    def patch(self, resource: str, name: str, namespace: Optional[str], patch: Dict[str, Any]) -> Dict[str, Any]:
        """Apply a JSON merge patch."""
        return self._run(
            ["patch", resource, name, *self._namespace_args(namespace), "--type=merge", "-p", json.dumps(patch)],
            json_output=True,
        )

    def patch_from(
        self,
        resource: str,
        original: Dict[str, Any],
        modified: Dict[str, Any],
        optimistic_lock: bool = False,
    ) -> Optional[Dict[str, Any]]:
        """
        Patch an object with the difference between a snapshot and a modified copy.

        Args:
            resource: kubectl resource name
            original: Snapshot the modification was computed against (not mutated)
            modified: Desired state of the object
            optimistic_lock: Include the snapshot's resourceVersion so a stale snapshot conflicts

        Returns:
            dict or None: Patched object, or None if there was nothing to change
        """
        patch = create_merge_patch(original, modified)
        if not patch:
            return None

        metadata = original.get("metadata", {})
        resource_version = metadata.get("resourceVersion")
        if optimistic_lock and resource_version:
            patch.setdefault("metadata", {})["resourceVersion"] = resource_version
        return self.patch(resource, metadata["name"], metadata.get("namespace"), patch)

    def delete(
        self, resource: str, name: str, namespace: Optional[str] = None, propagation: str = "foreground"
    ) -> None:
        """Delete an object without waiting for finalizers, using the given cascade policy."""
        self._run(
            ["delete", resource, name, *self._namespace_args(namespace), f"--cascade={propagation}", "--wait=false"]
        )

    def get_reference(self, ref: Dict[str, Any], default_namespace: Optional[str] = None) -> Dict[str, Any]:
        """Fetch the object an object reference points to."""
        return self.get(resource_for_reference(ref), ref["name"], ref.get("namespace") or default_namespace)

    def exec_in_pod(
        self,
        pod_name: str,
        namespace: str,
        command: List[str],
        timeout: Optional[float] = None,
        container_name: Optional[str] = None,
    ) -> Tuple[str, str]:
        """
        Run a command inside a pod.

        Args:
            pod_name: Name of the pod to execute command in
            namespace: Namespace of the pod
            command: List of command arguments to execute
            timeout: Deadline in seconds for the command
            container_name: Optional container name (if pod has multiple containers)

        Returns:
            tuple: (stdout, stderr) of the command; a non-zero exit raises KubectlCommandError with stderr attached
        """
        exec_command = ["exec", "-n", namespace, pod_name]
        if container_name:
            exec_command += ["-c", container_name]
        exec_command += ["--", *command]
        return self._run(exec_command, timeout=timeout, return_stderr=True)


class NodeLister:
    """Lists nodes of the target cluster."""

    def __init__(self, client: KubeClient) -> None:
        self.client = client

    def list_nodes(self) -> List[Dict[str, Any]]:
        return self.client.list("nodes")


class PodGetter:
    """Gets pods by name from one namespace of the target cluster."""

    def __init__(self, client: KubeClient, namespace: str) -> None:
        self.client = client
        self.namespace = namespace

    def get_pod(self, name: str) -> Dict[str, Any]:
        """Get a pod; raises ResourceNotFoundError when it does not exist."""
        return self.client.get("pods", name, self.namespace)


def resolve_target_kubeconfig(
    management_client: KubeClient, cluster_name: str, namespace: str, printer: Optional[Any] = None
) -> str:
    """
    Write the target cluster kubeconfig stored on the management cluster to a private file.

    Cluster API keeps it in the secret '<cluster-name>-kubeconfig' under the key 'value'.

    Returns:
        str: Path of the written kubeconfig file
    """
    secret_name = f"{cluster_name}-kubeconfig"
    if printer:
        printer.print_action("Retrieving target cluster kubeconfig", secret=secret_name, namespace=namespace)

    try:
        secret = management_client.get("secret", secret_name, namespace)
    except ResourceNotFoundError as e:
        raise ConfigurationError(
            f"no target kubeconfig given and secret {namespace}/{secret_name} does not exist"
        ) from e

    encoded = secret.get("data", {}).get("value")
    if not encoded:
        raise ConfigurationError(f"secret {namespace}/{secret_name} has no 'value' key")

    fd, path = tempfile.mkstemp(prefix=f"{cluster_name}-", suffix=".kubeconfig")
    with os.fdopen(fd, "wb") as f:
        f.write(base64.b64decode(encoded))
    os.chmod(path, 0o600)

    if printer:
        printer.print_info(f"Using target cluster kubeconfig from secret {namespace}/{secret_name}")
    return path
