#!/usr/bin/env python3
"""
Shared pytest configuration and fixtures for all tests.
"""

import copy
import json
import os
import sys
from typing import Any, Callable, Dict, List, Optional
from unittest.mock import Mock, patch

import pytest

# Add the parent directory to Python path so we can import modules
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from cluster_upgrade.exceptions import (  # noqa: E402
    ResourceAlreadyExistsError,
    ResourceConflictError,
    ResourceNotFoundError,
)
from cluster_upgrade.kube_client import resource_for_reference  # noqa: E402
from cluster_upgrade.utilities import create_merge_patch  # noqa: E402

CLUSTER_NAME = "test-cluster"
NAMESPACE = "default"


# =============================================================================
# Output and Time
# =============================================================================


@pytest.fixture
def mock_printer() -> Mock:
    """Shared mock printer for all test files.

    Returns:
        Mock: Mock printer instance with all required methods for testing
            output functionality without actual printing to console.
    """
    return Mock()


class FakeClock:
    """Stands in for the time module; sleeping advances the clock instantly."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.start = start
        self.now = 0.0
        self.sleeps: List[float] = []

    def monotonic(self) -> float:
        return self.now

    def time(self) -> float:
        return self.start + self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def fake_clock():
    """Replace the time module used by polling and retries with a FakeClock."""
    clock = FakeClock()
    with patch("cluster_upgrade.utilities.time", clock):
        yield clock


# =============================================================================
# Object Factories
# =============================================================================


@pytest.fixture
def machine_factory():
    """Factory for creating Cluster API control plane Machine objects.

    Returns:
        Callable that creates Machine resources with options for:
        - Version and provider ID
        - Upgrade annotation
        - Infrastructure and bootstrap references
    """

    def _create_machine(
        name: str = "controlplane-0",
        version: Optional[str] = "1.13.7",
        provider_id: Optional[str] = "aws:///us-east-1a/i-0000",
        upgrade_id: Optional[str] = None,
        namespace: str = NAMESPACE,
        cluster_name: str = CLUSTER_NAME,
    ) -> Dict[str, Any]:
        machine = {
            "apiVersion": "cluster.x-k8s.io/v1alpha2",
            "kind": "Machine",
            "metadata": {
                "name": name,
                "namespace": namespace,
                "labels": {
                    "cluster.x-k8s.io/cluster-name": cluster_name,
                    "cluster.x-k8s.io/control-plane": "true",
                },
                "resourceVersion": "100",
                "uid": f"uid-{name}",
            },
            "spec": {
                "bootstrap": {
                    "configRef": {
                        "apiVersion": "bootstrap.cluster.x-k8s.io/v1alpha2",
                        "kind": "KubeadmConfig",
                        "name": name,
                    }
                },
                "infrastructureRef": {
                    "apiVersion": "infrastructure.cluster.x-k8s.io/v1alpha2",
                    "kind": "AWSMachine",
                    "name": name,
                    "namespace": namespace,
                },
            },
            "status": {"phase": "Running"},
        }
        if version is not None:
            machine["spec"]["version"] = version
        if provider_id is not None:
            machine["spec"]["providerID"] = provider_id
        if upgrade_id is not None:
            machine["metadata"]["annotations"] = {"upgrade-id": upgrade_id}
        return machine

    return _create_machine


@pytest.fixture
def node_factory():
    """Factory for creating Node objects with a provider ID and addresses."""

    def _create_node(
        name: str = "ip-10-0-0-1.ec2.internal",
        provider_id: Optional[str] = "aws:///us-east-1a/i-0000",
        hostname: Optional[str] = None,
        internal_ip: str = "10.0.0.1",
    ) -> Dict[str, Any]:
        addresses = [{"type": "InternalIP", "address": internal_ip}]
        if hostname != "":
            addresses.append({"type": "Hostname", "address": hostname or name})
        node = {
            "apiVersion": "v1",
            "kind": "Node",
            "metadata": {"name": name},
            "spec": {},
            "status": {"addresses": addresses},
        }
        if provider_id is not None:
            node["spec"]["providerID"] = provider_id
        return node

    return _create_node


@pytest.fixture
def pod_factory():
    """Factory for creating kube-system static pod objects."""

    def _create_pod(
        name: str,
        node_name: str = "",
        pod_ip: str = "10.0.0.1",
        labels: Optional[Dict[str, str]] = None,
        conditions: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        if conditions is None:
            conditions = {"PodScheduled": "True", "Initialized": "True", "Ready": "True", "ContainersReady": "True"}
        return {
            "apiVersion": "v1",
            "kind": "Pod",
            "metadata": {"name": name, "namespace": "kube-system", "labels": labels or {}},
            "spec": {"nodeName": node_name},
            "status": {
                "podIP": pod_ip,
                "conditions": [{"type": kind, "status": status} for kind, status in conditions.items()],
            },
        }

    return _create_pod


@pytest.fixture
def etcd_member_list_factory():
    """Factory for etcdctl ``member list -w json`` output."""

    def _create_member_list(members: List[Dict[str, Any]]) -> str:
        return json.dumps(
            {
                "header": {"cluster_id": 14841639068965178418, "member_id": 10276657743932975437, "raft_term": 444},
                "members": [
                    {
                        "ID": member["id"],
                        "name": member["name"],
                        "peerURLs": [f"https://{member['ip']}:2380"],
                        "clientURLs": [f"https://{member['ip']}:2379"],
                    }
                    for member in members
                ],
            }
        )

    return _create_member_list


# =============================================================================
# In-Memory Cluster
# =============================================================================

_PLURALS = {
    "machines": "machine",
    "machinedeployments": "machinedeployment",
    "nodes": "node",
    "pods": "pod",
    "configmaps": "configmap",
    "secrets": "secret",
    "roles": "role",
    "rolebindings": "rolebinding",
}


def _kind_key(resource: str) -> str:
    first = resource.split(".")[0].lower()
    return _PLURALS.get(first, first)


def apply_merge_patch(target: Any, patch_body: Any) -> Any:
    """Apply a JSON merge patch (RFC 7386)."""
    if not isinstance(patch_body, dict):
        return copy.deepcopy(patch_body)
    result = copy.deepcopy(target) if isinstance(target, dict) else {}
    for key, value in patch_body.items():
        if value is None:
            result.pop(key, None)
        else:
            result[key] = apply_merge_patch(result.get(key), value)
    return result


class FakeKubeClient:
    """In-memory stand-in for KubeClient.

    Objects are keyed by (kind, namespace, name). Every mutating call is
    recorded in ``calls`` as (verb, kind, name). ``create_hooks`` are called
    with each created object, which lets a test play the part of the
    infrastructure provider.
    """

    def __init__(self, objects: Optional[List[Dict[str, Any]]] = None):
        self.objects: Dict[tuple, Dict[str, Any]] = {}
        self.calls: List[tuple] = []
        self.exec_calls: List[tuple] = []
        self.create_hooks: List[Callable[[Dict[str, Any]], None]] = []
        self.exec_handler: Callable[[str, List[str]], str] = lambda pod_name, command: ""
        self._resource_version = 1000
        for obj in objects or []:
            self.add(obj)

    @staticmethod
    def _key(kind: str, namespace: Optional[str], name: str) -> tuple:
        return (kind, namespace or "", name)

    def _next_resource_version(self) -> str:
        self._resource_version += 1
        return str(self._resource_version)

    def add(self, obj: Dict[str, Any]) -> None:
        stored = copy.deepcopy(obj)
        metadata = stored.setdefault("metadata", {})
        metadata.setdefault("resourceVersion", self._next_resource_version())
        self.objects[self._key(stored["kind"].lower(), metadata.get("namespace"), metadata["name"])] = stored

    def find(self, resource: str, name: str, namespace: Optional[str] = None) -> Optional[Dict[str, Any]]:
        return self.objects.get(self._key(_kind_key(resource), namespace, name))

    def of_kind(self, resource: str) -> List[Dict[str, Any]]:
        kind = _kind_key(resource)
        return [obj for key, obj in self.objects.items() if key[0] == kind]

    def calls_for(self, verb: str, resource: str) -> List[tuple]:
        kind = _kind_key(resource)
        return [call for call in self.calls if call[0] == verb and call[1] == kind]

    def _not_found(self, kind: str, name: str) -> ResourceNotFoundError:
        return ResourceNotFoundError(
            f'Error from server (NotFound): {kind} "{name}" not found', stderr=f"(NotFound) {kind} {name}"
        )

    def get(self, resource: str, name: str, namespace: Optional[str] = None) -> Dict[str, Any]:
        obj = self.find(resource, name, namespace)
        if obj is None:
            raise self._not_found(_kind_key(resource), name)
        return copy.deepcopy(obj)

    def list(self, resource: str, namespace: Optional[str] = None, label_selector: Optional[Dict[str, str]] = None):
        items = []
        for obj in self.of_kind(resource):
            metadata = obj["metadata"]
            if namespace and metadata.get("namespace") != namespace:
                continue
            labels = metadata.get("labels") or {}
            if label_selector and any(labels.get(key) != value for key, value in label_selector.items()):
                continue
            items.append(copy.deepcopy(obj))
        return items

    def create(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        metadata = obj["metadata"]
        kind = obj["kind"].lower()
        key = self._key(kind, metadata.get("namespace"), metadata["name"])
        if key in self.objects:
            raise ResourceAlreadyExistsError(f'{kind} "{metadata["name"]}" already exists', stderr="(AlreadyExists)")
        if "resourceVersion" in metadata:
            raise ResourceConflictError("resourceVersion should not be set on objects to be created")

        stored = copy.deepcopy(obj)
        stored["metadata"]["resourceVersion"] = self._next_resource_version()
        stored["metadata"]["uid"] = f"uid-{metadata['name']}"
        self.objects[key] = stored
        self.calls.append(("create", kind, metadata["name"]))
        for hook in self.create_hooks:
            hook(stored)
        return copy.deepcopy(stored)

    def update(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        metadata = obj["metadata"]
        kind = obj["kind"].lower()
        current = self.objects.get(self._key(kind, metadata.get("namespace"), metadata["name"]))
        if current is None:
            raise self._not_found(kind, metadata["name"])
        if metadata.get("resourceVersion") and metadata["resourceVersion"] != current["metadata"]["resourceVersion"]:
            raise ResourceConflictError("the object has been modified", stderr="(Conflict)")

        stored = copy.deepcopy(obj)
        stored["metadata"]["resourceVersion"] = self._next_resource_version()
        self.objects[self._key(kind, metadata.get("namespace"), metadata["name"])] = stored
        self.calls.append(("update", kind, metadata["name"]))
        return copy.deepcopy(stored)

    def patch(self, resource: str, name: str, namespace: Optional[str], patch_body: Dict[str, Any]):
        kind = _kind_key(resource)
        current = self.find(resource, name, namespace)
        if current is None:
            raise self._not_found(kind, name)
        expected_version = patch_body.get("metadata", {}).get("resourceVersion")
        if expected_version and expected_version != current["metadata"]["resourceVersion"]:
            raise ResourceConflictError("the object has been modified", stderr="(Conflict)")

        patched = apply_merge_patch(current, patch_body)
        patched["metadata"]["resourceVersion"] = self._next_resource_version()
        self.objects[self._key(kind, namespace, name)] = patched
        self.calls.append(("patch", kind, name))
        return copy.deepcopy(patched)

    def patch_from(self, resource, original, modified, optimistic_lock=False):
        patch_body = create_merge_patch(original, modified)
        if not patch_body:
            return None
        if optimistic_lock and original["metadata"].get("resourceVersion"):
            patch_body.setdefault("metadata", {})["resourceVersion"] = original["metadata"]["resourceVersion"]
        return self.patch(resource, original["metadata"]["name"], original["metadata"].get("namespace"), patch_body)

    def delete(self, resource: str, name: str, namespace: Optional[str] = None, propagation: str = "foreground"):
        kind = _kind_key(resource)
        if self.objects.pop(self._key(kind, namespace, name), None) is None:
            raise self._not_found(kind, name)
        self.calls.append(("delete", kind, name, propagation))

    def get_reference(self, ref: Dict[str, Any], default_namespace: Optional[str] = None) -> Dict[str, Any]:
        return self.get(resource_for_reference(ref), ref["name"], ref.get("namespace") or default_namespace)

    def exec_in_pod(self, pod_name, namespace, command, timeout=None, container_name=None):
        self.exec_calls.append((pod_name, namespace, command, timeout))
        return self.exec_handler(pod_name, command), ""


@pytest.fixture
def fake_client_factory():
    """Factory for FakeKubeClient instances pre-loaded with objects."""
    return FakeKubeClient
