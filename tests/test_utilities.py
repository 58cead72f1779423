#!/usr/bin/env python3
"""
Comprehensive pytest tests for utilities module.
Tests kubectl execution, polling, provider IDs and object helpers.
"""

import json
import os
import subprocess
import sys
from unittest.mock import Mock, patch

import pytest

# Add parent directory to path for module imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

# Import after path modification to avoid E402
from cluster_upgrade.exceptions import (  # noqa: E402
    CommandTimeoutError,
    ConfigurationError,
    KubectlCommandError,
    ResourceAlreadyExistsError,
    ResourceConflictError,
    ResourceNotFoundError,
    WaitTimeoutError,
)
from cluster_upgrade.utilities import (  # noqa: E402
    ProviderID,
    _is_retryable_error,
    create_merge_patch,
    execute_kubectl_command,
    format_runtime,
    hostname_for_node,
    poll_immediate,
    retry,
    sanitize_object,
    set_nested_field,
)


def completed(returncode=0, stdout="", stderr=""):
    return Mock(returncode=returncode, stdout=stdout, stderr=stderr)


# =============================================================================
# kubectl Execution
# =============================================================================


class TestExecuteKubectlCommand:
    """Test cases for running kubectl."""

    @patch("cluster_upgrade.utilities.subprocess.run")
    def test_json_output_is_parsed(self, mock_run) -> None:
        mock_run.return_value = completed(stdout=json.dumps({"items": []}))

        result = execute_kubectl_command(["get", "nodes"], kubeconfig="/tmp/kc", json_output=True)

        assert result == {"items": []}
        args, kwargs = mock_run.call_args
        assert args[0] == ["kubectl", "--kubeconfig", "/tmp/kc", "get", "nodes", "-o", "json"]
        assert kwargs["capture_output"] is True
        assert kwargs["text"] is True

    @patch("cluster_upgrade.utilities.subprocess.run")
    def test_stdin_and_timeout_are_passed(self, mock_run) -> None:
        mock_run.return_value = completed(stdout="ok")

        result = execute_kubectl_command(["apply", "-f", "-"], input_data="{}", timeout=30)

        assert result == "ok"
        _, kwargs = mock_run.call_args
        assert kwargs["input"] == "{}"
        assert kwargs["timeout"] == 30

    @patch("cluster_upgrade.utilities.subprocess.run")
    def test_return_stderr(self, mock_run) -> None:
        mock_run.return_value = completed(stdout="healthy\n", stderr="warning: slow endpoint\n")

        result = execute_kubectl_command(["exec", "etcd-h1", "--", "etcdctl"], return_stderr=True)

        assert result == ("healthy\n", "warning: slow endpoint\n")

    @pytest.mark.parametrize(
        "stderr,error_class",
        [
            ('Error from server (NotFound): machines "x" not found', ResourceNotFoundError),
            ('Error from server (AlreadyExists): roles "x" already exists', ResourceAlreadyExistsError),
            ("Error from server (Conflict): the object has been modified", ResourceConflictError),
            ("error: unknown flag --bogus", KubectlCommandError),
        ],
    )
    @patch("cluster_upgrade.utilities.subprocess.run")
    def test_errors_are_classified(self, mock_run, stderr, error_class) -> None:
        mock_run.return_value = completed(returncode=1, stderr=stderr)

        with pytest.raises(error_class) as exc_info:
            execute_kubectl_command(["get", "machines", "x"], max_retries=0)

        assert type(exc_info.value) is error_class
        assert exc_info.value.stderr == stderr
        assert exc_info.value.returncode == 1

    @patch("cluster_upgrade.utilities.subprocess.run")
    def test_retries_connectivity_errors(self, mock_run, fake_clock) -> None:
        mock_run.side_effect = [
            completed(returncode=1, stderr="dial tcp 10.0.0.1:6443: connect: connection refused"),
            completed(stdout="done"),
        ]
        printer = Mock()

        result = execute_kubectl_command(["get", "pods"], printer=printer, max_retries=3, retry_delay=2)

        assert result == "done"
        assert mock_run.call_count == 2
        assert fake_clock.sleeps == [2]
        printer.print_success.assert_called_once()

    @patch("cluster_upgrade.utilities.subprocess.run")
    def test_retry_backoff_then_failure(self, mock_run, fake_clock) -> None:
        mock_run.return_value = completed(returncode=1, stderr="Service Unavailable")

        with pytest.raises(KubectlCommandError):
            execute_kubectl_command(["get", "pods"], max_retries=2, retry_delay=2)

        assert mock_run.call_count == 3
        assert fake_clock.sleeps == [2, 3.0]

    @patch("cluster_upgrade.utilities.subprocess.run")
    def test_non_retryable_error_fails_immediately(self, mock_run, fake_clock) -> None:
        mock_run.return_value = completed(returncode=1, stderr="Error from server (Forbidden): nope")

        with pytest.raises(KubectlCommandError):
            execute_kubectl_command(["get", "pods"], max_retries=3)

        assert mock_run.call_count == 1
        assert fake_clock.sleeps == []

    @patch("cluster_upgrade.utilities.subprocess.run")
    def test_timeout_raises_command_timeout(self, mock_run) -> None:
        mock_run.side_effect = subprocess.TimeoutExpired(cmd="kubectl", timeout=5)

        with pytest.raises(CommandTimeoutError):
            execute_kubectl_command(["exec", "pod", "--", "true"], timeout=5)

    @patch("cluster_upgrade.utilities.subprocess.run")
    def test_invalid_json_raises(self, mock_run) -> None:
        mock_run.return_value = completed(stdout="not json")

        with pytest.raises(KubectlCommandError):
            execute_kubectl_command(["get", "nodes"], json_output=True)

    def test_is_retryable_error(self) -> None:
        assert _is_retryable_error("context deadline exceeded")
        assert _is_retryable_error("dial tcp 1.2.3.4:443: i/o timeout")
        assert not _is_retryable_error("Error from server (NotFound)")
        assert not _is_retryable_error("")


# =============================================================================
# Polling and Retry
# =============================================================================


class TestPollImmediate:
    """Test cases for bounded polling."""

    def test_checks_immediately(self, fake_clock) -> None:
        assert poll_immediate(5, 60, lambda: "value", "thing") == "value"
        assert fake_clock.sleeps == []

    def test_polls_at_interval_until_truthy(self, fake_clock) -> None:
        results = iter([None, "", "found"])

        assert poll_immediate(5, 60, lambda: next(results), "thing") == "found"
        assert fake_clock.sleeps == [5, 5]

    def test_times_out(self, fake_clock) -> None:
        with pytest.raises(WaitTimeoutError, match="thing"):
            poll_immediate(5, 12, lambda: False, "thing")
        assert fake_clock.sleeps == [5, 5, 2]

    def test_condition_error_propagates(self, fake_clock) -> None:
        def failing():
            raise ResourceNotFoundError("gone")

        with pytest.raises(ResourceNotFoundError):
            poll_immediate(5, 60, failing, "thing")
        assert fake_clock.sleeps == []


class TestRetry:
    """Test cases for the fixed count retry helper."""

    def test_returns_first_success(self, fake_clock) -> None:
        fn = Mock(side_effect=[ValueError("boom"), "ok"])

        assert retry(fn, 3, 1, "arg") == "ok"
        fn.assert_called_with("arg")
        assert fake_clock.sleeps == [1]

    def test_raises_last_failure(self, fake_clock) -> None:
        fn = Mock(side_effect=[ValueError("one"), ValueError("two")])

        with pytest.raises(ValueError, match="two"):
            retry(fn, 2, 1)
        assert fn.call_count == 2

    def test_zero_count_calls_once(self, fake_clock) -> None:
        fn = Mock(side_effect=ValueError("once"))

        with pytest.raises(ValueError):
            retry(fn, 0, 1)
        assert fn.call_count == 1


# =============================================================================
# Provider IDs and Nodes
# =============================================================================


class TestProviderID:
    """Test cases for provider ID normalisation."""

    def test_parses_cloud_provider_and_id(self) -> None:
        provider_id = ProviderID("aws:///us-east-1a/i-0123456789")
        assert provider_id.cloud_provider == "aws"
        assert provider_id.id == "i-0123456789"
        assert str(provider_id) == "aws://i-0123456789"

    def test_equality_ignores_intermediate_segments(self) -> None:
        assert ProviderID("aws:///us-east-1a/i-0abc") == ProviderID("aws://i-0abc")
        assert ProviderID("aws:///us-east-1a/i-0abc") != ProviderID("gce:///us-east-1a/i-0abc")
        assert ProviderID("aws:///us-east-1a/i-0abc") != ProviderID("aws:///us-east-1a/i-0abd")

    def test_usable_as_dict_key(self) -> None:
        index = {ProviderID("aws:///us-east-1a/i-0abc"): "node"}
        assert index[ProviderID("aws://i-0abc")] == "node"

    @pytest.mark.parametrize("raw", ["", None, "i-0abc", "aws://i-0abc/", "://i-0abc"])
    def test_rejects_invalid(self, raw) -> None:
        with pytest.raises(ConfigurationError):
            ProviderID(raw)


class TestHostnameForNode:
    """Test cases for node hostname resolution."""

    def test_first_hostname_address(self) -> None:
        node = {
            "status": {
                "addresses": [
                    {"type": "ExternalIP", "address": "54.1.2.3"},
                    {"type": "Hostname", "address": "h1"},
                    {"type": "Hostname", "address": "h2"},
                ]
            }
        }
        assert hostname_for_node(node) == "h1"

    def test_no_hostname_address(self) -> None:
        node = {"status": {"addresses": [{"type": "InternalIP", "address": "10.0.0.1"}]}}
        assert hostname_for_node(node) == ""

    def test_no_node(self) -> None:
        assert hostname_for_node(None) == ""


# =============================================================================
# Object Helpers
# =============================================================================


class TestCreateMergePatch:
    """Test cases for merge patch computation."""

    def test_only_changed_fields(self) -> None:
        original = {"metadata": {"name": "m", "annotations": {"a": "1"}}, "spec": {"version": "1.13.7", "x": 1}}
        modified = {
            "metadata": {"name": "m", "annotations": {"a": "1", "b": "2"}},
            "spec": {"version": "1.13.8", "x": 1},
        }

        assert create_merge_patch(original, modified) == {
            "metadata": {"annotations": {"b": "2"}},
            "spec": {"version": "1.13.8"},
        }

    def test_removed_keys_become_null(self) -> None:
        assert create_merge_patch({"a": 1, "b": 2}, {"a": 1}) == {"b": None}

    def test_identical_objects(self) -> None:
        assert create_merge_patch({"a": {"b": [1, 2]}}, {"a": {"b": [1, 2]}}) == {}

    def test_inputs_not_mutated(self) -> None:
        original = {"spec": {"list": [1]}}
        modified = {"spec": {"list": [1, 2]}}
        patch_body = create_merge_patch(original, modified)
        patch_body["spec"]["list"].append(3)
        assert modified == {"spec": {"list": [1, 2]}}
        assert original == {"spec": {"list": [1]}}


class TestSanitizeObject:
    """Test cases for preparing object copies for creation."""

    def test_strips_runtime_fields_and_renames(self, machine_factory) -> None:
        machine = machine_factory()
        clean = sanitize_object(machine, name="controlplane-0-1700000000")

        assert clean["metadata"]["name"] == "controlplane-0-1700000000"
        assert "resourceVersion" not in clean["metadata"]
        assert "uid" not in clean["metadata"]
        assert "status" not in clean
        assert machine["metadata"]["resourceVersion"] == "100"
        assert machine["metadata"]["name"] == "controlplane-0"


class TestSetNestedField:
    """Test cases for dotted path assignment."""

    def test_creates_intermediate_maps(self) -> None:
        spec = {"providerSpec": {"value": {}}}
        set_nested_field(spec, "providerSpec.value.ami.id", "ami-123")
        assert spec == {"providerSpec": {"value": {"ami": {"id": "ami-123"}}}}

    def test_rejects_non_map_path(self) -> None:
        with pytest.raises(ConfigurationError):
            set_nested_field({"ami": "flat"}, "ami.id", "ami-123")

    def test_rejects_empty_path(self) -> None:
        with pytest.raises(ConfigurationError):
            set_nested_field({}, "", "ami-123")


class TestFormatRuntime:
    """Test cases for runtime formatting functionality."""

    def test_format_runtime_seconds_only(self) -> None:
        assert format_runtime(1000.0, 1010.5) == "10s"

    def test_format_runtime_minutes_and_seconds(self) -> None:
        assert format_runtime(1000.0, 1090.5) == "1m 30s"

    def test_format_runtime_hours(self) -> None:
        assert format_runtime(0.0, 3725.0) == "1h 2m 5s"
