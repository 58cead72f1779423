#!/usr/bin/env python3
"""Arguments Parser module for the Cluster Upgrade Tool."""

import argparse

from . import print_manager
from .configuration_manager import UPGRADE_MODES


class ArgumentsParser:
    """Handles command-line argument parsing for upgrade runs"""

    @staticmethod
    def parse_arguments(argv=None):
        """
        Parse command-line arguments and return configuration

        Options left unset are None so values from --config can fill them in.

        Args:
            argv: Argument list, defaults to sys.argv[1:]

        Returns:
            argparse.Namespace: Parsed arguments
        """
        parser = argparse.ArgumentParser(
            description="Roll a Cluster API managed cluster to a new Kubernetes version"
        )

        parser.add_argument(
            "--config",
            type=str,
            required=False,
            help="Path to a YAML configuration file; command-line options take precedence",
        )
        parser.add_argument(
            "--cluster_name",
            type=str,
            required=False,
            help="The name of the Cluster API cluster to upgrade",
        )
        parser.add_argument(
            "--cluster_namespace",
            type=str,
            required=False,
            help="The namespace of the cluster's objects on the management cluster (default: default)",
        )
        parser.add_argument(
            "--kubernetes_version",
            type=str,
            required=False,
            help="The desired Kubernetes version (default: highest version found on the control plane)",
        )
        parser.add_argument(
            "--upgrade_id",
            type=str,
            required=False,
            help="Identifier stamped on upgraded machines; reuse it to resume an interrupted run",
        )
        parser.add_argument(
            "--image_id",
            type=str,
            required=False,
            help="Optional: machine image to set on every new machine (requires --image_field)",
        )
        parser.add_argument(
            "--image_field",
            type=str,
            required=False,
            help="Optional: dotted path of the image field inside the machine spec, e.g. providerSpec.value.ami.id",
        )
        parser.add_argument(
            "--management_kubeconfig",
            type=str,
            required=False,
            help="Kubeconfig of the management cluster (default: kubectl's current context)",
        )
        parser.add_argument(
            "--target_kubeconfig",
            type=str,
            required=False,
            help="Kubeconfig of the cluster being upgraded (default: read from the <cluster>-kubeconfig secret)",
        )
        parser.add_argument(
            "--mode",
            type=str,
            choices=UPGRADE_MODES,
            required=False,
            help="Upgrade the control plane (replacement) or the worker machine deployments (in-place patch)",
        )
        parser.add_argument(
            "--provider_id_timeout",
            type=float,
            required=False,
            help="Seconds to wait for a new machine's provider ID (0 disables this and later waits)",
        )
        parser.add_argument(
            "--matching_node_timeout",
            type=float,
            required=False,
            help="Seconds to wait for a node matching the new machine (0 disables this and later waits)",
        )
        parser.add_argument(
            "--node_ready_timeout",
            type=float,
            required=False,
            help="Seconds to wait for the new node's control plane pods to be ready (0 disables this wait)",
        )
        parser.add_argument(
            "--etcd_timeout",
            type=float,
            required=False,
            help="Deadline in seconds for each etcdctl command (default: 60)",
        )
        parser.add_argument(
            "--api_retries",
            type=int,
            required=False,
            help="Retries for kubectl reads failing with API connectivity errors (default: 0)",
        )
        parser.add_argument(
            "--skip-provider-id-wait",
            dest="skip_provider_id_wait",
            action="store_true",
            help="Do not wait for provider IDs (also skips the node waits)",
        )
        parser.add_argument(
            "--skip-matching-node-wait",
            dest="skip_matching_node_wait",
            action="store_true",
            help="Do not wait for matching nodes (also skips the node ready wait)",
        )
        parser.add_argument(
            "--skip-node-ready-wait",
            dest="skip_node_ready_wait",
            action="store_true",
            help="Do not wait for the new node's control plane pods to be ready",
        )
        parser.add_argument(
            "--debug",
            action="store_true",
            help="Enable debug output (shows command execution details)",
        )

        args = parser.parse_args(argv)

        # Set global debug mode
        print_manager.DEBUG_MODE = args.debug

        return args
