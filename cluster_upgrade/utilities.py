#!/usr/bin/env python3
"""Utilities module for the Cluster Upgrade Tool."""

import copy
import json
import re
import subprocess
import time
from typing import Any, Callable, Dict, List, Optional

from .exceptions import (
    CommandTimeoutError,
    ConfigurationError,
    KubectlCommandError,
    ResourceAlreadyExistsError,
    ResourceConflictError,
    ResourceNotFoundError,
    WaitTimeoutError,
)

# Server-populated fields that must not be sent back when creating a copy of an object
RUNTIME_METADATA_FIELDS = ("resourceVersion", "uid", "creationTimestamp", "generation", "managedFields", "selfLink")

_PROVIDER_ID_PATTERN = re.compile(r"^[^:]+://.*[^/]$")


def _is_retryable_error(stderr_text):
    """Check if the error is worth retrying."""
    if not stderr_text:
        return False

    # Common API server connectivity issues that warrant retry
    retryable_patterns = [
        r"keepalive ping failed",
        r"connection refused",
        r"timeout",
        r"connection reset",
        r"temporary failure in name resolution",
        r"service unavailable",
        r"internal server error",
        r"too many requests",
        r"server is currently unable to handle the request",
        r"dial tcp.*connect: connection refused",
        r"dial tcp.*i/o timeout",
        r"context deadline exceeded",
    ]

    stderr_lower = stderr_text.lower()
    return any(re.search(pattern, stderr_lower) for pattern in retryable_patterns)


def _build_kubectl_command(command: List[str], kubeconfig: Optional[str], json_output: bool) -> List[str]:
    exec_command = ["kubectl"]
    if kubeconfig:
        exec_command += ["--kubeconfig", kubeconfig]
    exec_command += list(command)
    if json_output and "-o" not in command:
        exec_command += ["-o", "json"]
    return exec_command


def _log_retry_attempt(printer, attempt, max_retries, exec_command):
    """Log retry attempt information."""
    if not printer:
        return
    if attempt == 0:
        printer.print_action(f"Executing kubectl command: {' '.join(exec_command)}")
    else:
        printer.print_info(f"Retry attempt {attempt}/{max_retries}: {' '.join(exec_command)}")


def _classify_kubectl_error(exec_command: List[str], stderr: str, returncode: int) -> KubectlCommandError:
    """Map kubectl's stderr to the matching exception type."""
    stderr = stderr or ""
    message = f"kubectl command failed ({' '.join(exec_command)}): {stderr.strip() or f'exit code {returncode}'}"

    if "(NotFound)" in stderr:
        error_class = ResourceNotFoundError
    elif "(AlreadyExists)" in stderr:
        error_class = ResourceAlreadyExistsError
    elif "(Conflict)" in stderr:
        error_class = ResourceConflictError
    else:
        error_class = KubectlCommandError
    return error_class(message, command=exec_command, stderr=stderr, returncode=returncode)


def execute_kubectl_command(
    command,
    kubeconfig=None,
    json_output=False,
    input_data=None,
    timeout=None,
    printer=None,
    max_retries=3,
    retry_delay=2,
    return_stderr=False,
):
    """
    Execute a kubectl command with retry logic for API connectivity failures.

    Args:
        command: List of command arguments to execute (excluding 'kubectl')
        kubeconfig: Optional path to the kubeconfig selecting the cluster
        json_output: If True, request JSON output and parse the result
        input_data: Optional text fed to the command's stdin (used with '-f -')
        timeout: Optional deadline in seconds for a single attempt
        printer: Printer instance for output
        max_retries: Maximum number of retry attempts for connectivity errors (default: 3)
        retry_delay: Seconds to wait between retries (default: 2)
        return_stderr: If True, return the (stdout, stderr) pair of a successful command

    Returns:
        str or dict: Command output as string, or parsed JSON dict if json_output=True
        tuple: (stdout, stderr) if return_stderr=True

    Raises:
        ResourceNotFoundError, ResourceAlreadyExistsError, ResourceConflictError:
            When kubectl reports the matching API status
        CommandTimeoutError: When the deadline expires
        KubectlCommandError: For any other failure
    """
    exec_command = _build_kubectl_command(command, kubeconfig, json_output)

    for attempt in range(max_retries + 1):  # +1 for the initial attempt
        _log_retry_attempt(printer, attempt, max_retries, exec_command)
        try:
            result = subprocess.run(exec_command, input=input_data, capture_output=True, text=True, timeout=timeout)
        except subprocess.TimeoutExpired as e:
            raise CommandTimeoutError(
                f"kubectl command timed out after {timeout}s: {' '.join(exec_command)}", command=exec_command
            ) from e
        except OSError as e:
            raise KubectlCommandError(f"unable to run kubectl: {e}", command=exec_command) from e

        if result.returncode == 0:
            if attempt > 0 and printer:
                printer.print_success(f"Command succeeded on retry attempt {attempt}")
            if return_stderr:
                return result.stdout, result.stderr
            if not json_output:
                return result.stdout
            try:
                return json.loads(result.stdout)
            except json.JSONDecodeError as e:
                raise KubectlCommandError(
                    f"unable to parse JSON output of {' '.join(exec_command)}: {e}", command=exec_command
                ) from e

        if attempt < max_retries and _is_retryable_error(result.stderr):
            if printer:
                printer.print_warning(f"Command failed with retryable error, waiting {retry_delay}s before retry...")
                printer.print_info(f"Error: {result.stderr.strip()}")
            time.sleep(retry_delay)
            retry_delay *= 1.5  # Exponential backoff with factor of 1.5
            continue

        raise _classify_kubectl_error(exec_command, result.stderr, result.returncode)

    # Unreachable: the final attempt either returns or raises
    raise KubectlCommandError(f"kubectl command failed: {' '.join(exec_command)}", command=exec_command)


def format_runtime(start_time, end_time):
    """
    Format runtime duration in a human-readable way.

    Args:
        start_time (float): Start timestamp from time.time()
        end_time (float): End timestamp from time.time()

    Returns:
        str: Formatted runtime string (e.g., "5m 23s", "1h 15m 30s")
    """
    total_seconds = int(end_time - start_time)

    hours = total_seconds // 3600
    minutes = (total_seconds % 3600) // 60
    seconds = total_seconds % 60

    if hours > 0:
        return f"{hours}h {minutes}m {seconds}s"
    elif minutes > 0:
        return f"{minutes}m {seconds}s"
    else:
        return f"{seconds}s"


def poll_immediate(interval: float, timeout: float, condition: Callable[[], Any], description: str) -> Any:
    """Evaluate ``condition`` now and then every ``interval`` seconds until it is truthy.

    Exceptions raised by the condition abort the wait and propagate unchanged.

    Args:
        interval: Seconds between evaluations
        timeout: Hard deadline in seconds, measured from the first evaluation
        condition: Zero-argument callable; a truthy return ends the wait
        description: What is being waited for, used in the timeout message

    Returns:
        The first truthy value returned by ``condition``

    Raises:
        WaitTimeoutError: If the deadline passes first
    """
    deadline = time.monotonic() + timeout
    while True:
        result = condition()
        if result:
            return result
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise WaitTimeoutError(f"timed out after {timeout}s waiting for {description}")
        time.sleep(min(interval, remaining))


def retry(fn: Callable[..., Any], count: int, interval: float, *args: Any, **kwargs: Any) -> Any:
    """Call ``fn`` up to ``count`` times, sleeping ``interval`` seconds after each failure.

    The last failure is re-raised. ``fn`` is always called at least once.
    """
    attempt = 1
    while True:
        try:
            return fn(*args, **kwargs)
        except Exception:
            if attempt >= count:
                raise
            attempt += 1
            time.sleep(interval)


class ProviderID:
    """Normalised compute identity of the form ``<cloudProvider>://<optional>/<segments>/<id>``.

    Two provider IDs are equal when their cloud provider and final path
    segment match, so ``aws:///us-east-1a/i-0abc`` equals ``aws://i-0abc``.
    """

    def __init__(self, raw: Optional[str]):
        if not raw:
            raise ConfigurationError("providerID is empty")
        if not _PROVIDER_ID_PATTERN.match(raw):
            raise ConfigurationError(
                f"providerID {raw!r} must be of the form <cloudProvider>://<optional>/<segments>/<provider id>"
            )
        self.raw = raw
        self.cloud_provider = raw[: raw.index(":")]
        self.id = raw[raw.rindex("/") + 1 :]

    def __eq__(self, other):
        if not isinstance(other, ProviderID):
            return NotImplemented
        return self.cloud_provider == other.cloud_provider and self.id == other.id

    def __hash__(self):
        return hash((self.cloud_provider, self.id))

    def __str__(self):
        return f"{self.cloud_provider}://{self.id}"

    def __repr__(self):
        return f"ProviderID('{self.raw}')"


def hostname_for_node(node: Optional[Dict[str, Any]]) -> str:
    """
    Resolve the hostname of a node from its status addresses.

    Args:
        node: Node object as returned by the API, or None

    Returns:
        str: Address of the first Hostname-typed entry, or "" if there is none
    """
    if not node:
        return ""
    for address in node.get("status", {}).get("addresses", []):
        if address.get("type") == "Hostname":
            return address.get("address", "")
    return ""


def create_merge_patch(original: Dict[str, Any], modified: Dict[str, Any]) -> Dict[str, Any]:
    """Compute the JSON merge patch (RFC 7386) that turns ``original`` into ``modified``.

    Neither argument is mutated. Removed keys map to None.
    """
    patch: Dict[str, Any] = {}
    for key in original:
        if key not in modified:
            patch[key] = None

    for key, value in modified.items():
        if key in original and original[key] == value:
            continue
        old_value = original.get(key)
        if isinstance(value, dict) and isinstance(old_value, dict):
            nested = create_merge_patch(old_value, value)
            if nested:
                patch[key] = nested
        else:
            patch[key] = copy.deepcopy(value)
    return patch


def sanitize_object(obj: Dict[str, Any], name: Optional[str] = None) -> Dict[str, Any]:
    """
    Return a copy of an API object that can be submitted as a new object.

    Server-populated metadata and the status block are dropped. The input is
    never modified.

    Args:
        obj: Object as read from the API
        name: Optional new name for the copy

    Returns:
        dict: Sanitized deep copy
    """
    clean = copy.deepcopy(obj)
    metadata = clean.setdefault("metadata", {})
    for field in RUNTIME_METADATA_FIELDS:
        metadata.pop(field, None)
    clean.pop("status", None)
    if name is not None:
        metadata["name"] = name
    return clean


def set_nested_field(obj: Dict[str, Any], dotted_path: str, value: Any) -> None:
    """
    Set a value at a dotted path such as ``ami.id``, creating intermediate maps.

    Raises:
        ConfigurationError: If the path is empty or runs through a non-map value
    """
    keys = [key for key in dotted_path.split(".") if key]
    if not keys:
        raise ConfigurationError(f"invalid field path {dotted_path!r}")

    current = obj
    for key in keys[:-1]:
        current = current.setdefault(key, {})
        if not isinstance(current, dict):
            raise ConfigurationError(f"cannot set {dotted_path!r}: {key!r} is not a map")
    current[keys[-1]] = value


def update_machine_spec_image(spec: Dict[str, Any], image_field: str, image_id: str) -> None:
    """Rewrite the image field of a machine spec in place."""
    try:
        set_nested_field(spec, image_field, image_id)
    except ConfigurationError as e:
        raise ConfigurationError(f"unable to set image field: {e}") from e


def describe_object(obj: Dict[str, Any]) -> str:
    """Return ``namespace/name`` for log and error messages."""
    metadata = obj.get("metadata", {})
    namespace = metadata.get("namespace")
    name = metadata.get("name", "<unnamed>")
    return f"{namespace}/{name}" if namespace else name
