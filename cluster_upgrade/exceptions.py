#!/usr/bin/env python3
"""Exception types raised by the Cluster Upgrade Tool."""

from typing import List, Optional


class UpgradeError(Exception):
    """Base class for every error that aborts an upgrade run."""

    def with_context(self, context: str) -> "UpgradeError":
        """Return an error of the same type whose message is prefixed with ``context``."""
        return type(self)(f"{context}: {self}")


class ConfigurationError(UpgradeError):
    """Invalid configuration or cluster state that makes the upgrade unsafe to start or continue."""


class WaitTimeoutError(UpgradeError):
    """A bounded wait stage did not converge before its deadline."""


class HostnameResolutionError(UpgradeError):
    """A node carries no Hostname-typed address."""


class EtcdMemberParseError(UpgradeError):
    """etcdctl produced output that is not a member listing."""


class EtcdMemberNotFoundError(UpgradeError):
    """No etcd member or etcd pod could be found for a node."""


class KubectlCommandError(UpgradeError):
    """A kubectl invocation exited with a non-zero status.

    Attributes:
        command: Full command line that was executed
        stderr: Captured standard error (may be empty)
        returncode: Process exit status, None if the process never completed
    """

    def __init__(self, message: str, command: Optional[List[str]] = None, stderr: str = "", returncode=None):
        super().__init__(message)
        self.command = command or []
        self.stderr = stderr or ""
        self.returncode = returncode

    def with_context(self, context: str) -> "KubectlCommandError":
        return type(self)(f"{context}: {self}", command=self.command, stderr=self.stderr, returncode=self.returncode)


class ResourceNotFoundError(KubectlCommandError):
    """The requested object does not exist."""


class ResourceAlreadyExistsError(KubectlCommandError):
    """An object with the same name already exists."""


class ResourceConflictError(KubectlCommandError):
    """The write was computed against a stale resourceVersion."""


class CommandTimeoutError(KubectlCommandError):
    """The command did not finish within its deadline."""
