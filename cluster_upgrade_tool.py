#!/usr/bin/env python3
"""
Cluster Upgrade Tool

This is the main entry point for the Cluster Upgrade Tool. It upgrades the
Kubernetes version of a Cluster API managed cluster, either by rolling
replacement of the control plane machines or by patching the worker
machine deployments.
"""

import sys
import time

from cluster_upgrade import (
    ArgumentsParser,
    UpgradeError,
    build_upgrade_config,
    create_upgrader,
    format_runtime,
    handle_successful_completion,
    handle_upgrade_failure,
    printer,
)


def main(argv=None):
    """
    Main function to run one upgrade.

    The run is resumable: machines and machine deployments already carrying
    the upgrade ID are skipped, so a failed run can be repeated with the same
    --upgrade_id.

    Args:
        argv: Command-line arguments, defaults to sys.argv[1:]

    Returns:
        int: Exit status, 0 on success and 1 on failure
    """
    args = ArgumentsParser.parse_arguments(argv)
    start_time = time.time()

    try:
        config = build_upgrade_config(args)
    except UpgradeError as e:
        printer.print_error(f"Invalid configuration: {e}")
        return 1

    printer.print_header(f"Cluster Upgrade Tool - {config.mode}")
    printer.print_info(
        "Upgrading cluster", name=config.cluster_name, namespace=config.cluster_namespace, upgrade_id=config.upgrade_id
    )

    upgrader = None
    try:
        upgrader = create_upgrader(config, printer)
        upgrader.upgrade()
    except UpgradeError as e:
        handle_upgrade_failure(str(e), format_runtime, start_time, printer)
        return 1
    finally:
        if upgrader is not None:
            upgrader.cleanup()

    handle_successful_completion(config.cluster_name, config.mode, start_time, printer, format_runtime)
    return 0


if __name__ == "__main__":
    sys.exit(main())
