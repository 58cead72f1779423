#!/usr/bin/env python3
"""ETCD Manager module for etcd membership operations on the target cluster."""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .exceptions import EtcdMemberNotFoundError, EtcdMemberParseError, HostnameResolutionError, UpgradeError
from .kube_client import KubeClient
from .print_manager import PrintManager

ETCD_NAMESPACE = "kube-system"
ETCD_POD_SELECTOR = {"component": "etcd"}
ETCD_CLIENT_PORT = 2379

ETCD_CA_CERT_FILE = "/etc/kubernetes/pki/etcd/ca.crt"
ETCD_CERT_FILE = "/etc/kubernetes/pki/etcd/peer.crt"
ETCD_KEY_FILE = "/etc/kubernetes/pki/etcd/peer.key"


@dataclass
class EtcdMember:
    """One etcd cluster member as reported by ``etcdctl member list``."""

    id: int
    name: str
    client_urls: List[str] = field(default_factory=list)

    @property
    def hex_id(self) -> str:
        # etcdctl expects member IDs in hexadecimal
        return format(self.id, "x")


def parse_member_list(output: str) -> List[EtcdMember]:
    """
    Parse the JSON output of ``etcdctl member list -w json``.

    Only ID, name and clientURLs are kept, in input order.

    Args:
        output: Raw stdout of etcdctl

    Returns:
        list: EtcdMember entries

    Raises:
        EtcdMemberParseError: If the output is not a member listing
    """
    try:
        response = json.loads(output)
        return [
            EtcdMember(
                id=int(member["ID"]),
                name=member.get("name", ""),
                client_urls=list(member.get("clientURLs") or []),
            )
            for member in response.get("members") or []
        ]
    except (json.JSONDecodeError, TypeError, ValueError, KeyError, AttributeError) as e:
        raise EtcdMemberParseError(f"unable to parse etcdctl member list json output: {e}") from e


def build_etcdctl_command(pod: Dict[str, Any], args: List[str]) -> List[str]:
    """
    Build the shell command running etcdctl against the etcd member of a pod.

    Args:
        pod: etcd pod object
        args: etcdctl arguments, e.g. ["member", "list", "-w", "json"]

    Returns:
        list: Command suitable for exec_in_pod
    """
    endpoint = f"https://{pod.get('status', {}).get('podIP', '')}:{ETCD_CLIENT_PORT}"
    full_args = [
        "ETCDCTL_API=3",
        "etcdctl",
        "--cacert",
        ETCD_CA_CERT_FILE,
        "--cert",
        ETCD_CERT_FILE,
        "--key",
        ETCD_KEY_FILE,
        "--endpoints",
        endpoint,
        *args,
    ]
    return ["sh", "-c", " ".join(full_args)]


class EtcdManager:
    """Lists, health-checks and removes etcd members through etcdctl in the etcd static pods."""

    def __init__(self, client: KubeClient, printer: PrintManager, timeout: float = 60) -> None:
        """Initialize EtcdManager.

        Args:
            client: KubeClient for the target cluster
            printer: PrintManager instance for formatted output
            timeout: Deadline in seconds for each etcdctl invocation
        """
        self.client = client
        self.printer = printer
        self.timeout = timeout

    def list_etcd_pods(self) -> List[Dict[str, Any]]:
        return self.client.list("pods", ETCD_NAMESPACE, ETCD_POD_SELECTOR)

    def etcdctl(self, *args: str) -> str:
        """Run etcdctl in the first etcd pod and return its stdout."""
        pods = self.list_etcd_pods()
        if not pods:
            raise UpgradeError("found 0 etcd pods")
        return self.etcdctl_for_pod(pods[0], *args)

    def etcdctl_for_pod(self, pod: Dict[str, Any], *args: str) -> str:
        """Run etcdctl in a specific etcd pod and return its stdout."""
        metadata = pod["metadata"]
        command = build_etcdctl_command(pod, list(args))
        self.printer.print_action(f"Running etcdctl {' '.join(args)}", pod=metadata["name"])

        stdout, stderr = self.client.exec_in_pod(
            metadata["name"], metadata.get("namespace", ETCD_NAMESPACE), command, timeout=self.timeout
        )
        self.printer.print_action(f"etcdctl stdout: {stdout.strip()}")
        if stderr:
            self.printer.print_action(f"etcdctl stderr: {stderr.strip()}")
        return stdout

    def list_members(self) -> List[EtcdMember]:
        return parse_member_list(self.etcdctl("member", "list", "-w", "json"))

    def health_check(self) -> None:
        """
        Check the health of every member's client endpoints.

        Endpoints are passed explicitly rather than with --cluster, which
        etcd 3.2 does not support.

        Raises:
            UpgradeError: If no member exposes a client URL or any endpoint is unhealthy
        """
        members = self.list_members()
        endpoints = [url for member in members for url in member.client_urls]
        if not endpoints:
            raise EtcdMemberNotFoundError("etcd member list contains no client URLs")

        self.printer.print_info(f"Checking health of {len(endpoints)} etcd endpoint(s)")
        self.etcdctl("endpoint", "health", "--endpoints", ",".join(endpoints))
        self.printer.print_success("etcd cluster is healthy")

    def map_hostnames_to_member_ids(self) -> Dict[str, str]:
        """Snapshot member name (node hostname) to hexadecimal member ID for every current member."""
        members = self.list_members()
        mapping = {member.name: member.hex_id for member in members}
        for name, member_id in mapping.items():
            self.printer.print_info(f"etcd member {member_id} runs on {name}")
        return mapping

    def remove_member(self, node_hostname: str, member_id: Optional[str]) -> None:
        """
        Remove an etcd member, running etcdctl in the etcd pod on the given (new) node.

        Args:
            node_hostname: Hostname of the node whose etcd pod runs the removal
            member_id: Hexadecimal ID of the member to remove

        Raises:
            HostnameResolutionError: If no hostname is given
            EtcdMemberNotFoundError: If there is no member ID or no etcd pod on the node
            UpgradeError: If there are no etcd pods at all
        """
        if not node_hostname:
            raise HostnameResolutionError("cannot select an etcd pod without a node hostname")
        if not member_id:
            raise EtcdMemberNotFoundError("no etcd member recorded for the old node")

        pods = self.list_etcd_pods()
        if not pods:
            raise UpgradeError("found 0 etcd pods")

        pod = next((p for p in pods if p.get("spec", {}).get("nodeName") == node_hostname), None)
        if pod is None:
            raise EtcdMemberNotFoundError(f"no new etcd pod found running on node {node_hostname}")

        self.printer.print_action("Removing etcd member", member=member_id, pod=pod["metadata"]["name"])
        self.etcdctl_for_pod(pod, "member", "remove", member_id)
        self.printer.print_success(f"Removed etcd member {member_id}")
