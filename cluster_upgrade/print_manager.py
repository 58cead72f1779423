#!/usr/bin/env python3
"""Print Manager module for the Cluster Upgrade Tool."""

# Global debug flag
DEBUG_MODE = False


def _with_context(message, context):
    """Append key=value pairs to a message, keeping keyword order."""
    if not context:
        return message
    pairs = " ".join(f"{key}={value}" for key, value in context.items())
    return f"{message} ({pairs})"


class PrintManager:
    """Formats all console output for upgrade runs.

    Every method accepts optional keyword context which is rendered as
    ``key=value`` pairs after the message, e.g. the machine name and
    namespace an operation is acting on.
    """

    @staticmethod
    def print_header(message):
        """Print a section header with visual separation"""
        print(f"\n{'=' * 60}")
        print(f" {message.upper()}")
        print(f"{'=' * 60}")

    @staticmethod
    def print_info(message, **context):
        print(f"    [INFO]  {_with_context(message, context)}")

    @staticmethod
    def print_success(message, **context):
        print(f"    [✓]     {_with_context(message, context)}")

    @staticmethod
    def print_warning(message, **context):
        print(f"    [⚠️]     {_with_context(message, context)}")

    @staticmethod
    def print_error(message, **context):
        print(f"    [✗]     {_with_context(message, context)}")

    @staticmethod
    def print_step(step_num, total_steps, message):
        """Print numbered step"""
        print(f"[{step_num}/{total_steps}] {message}")

    @staticmethod
    def print_action(message, **context):
        """Print action being performed (only in debug mode)"""
        if DEBUG_MODE:
            print(f"    [ACTION] {_with_context(message, context)}")


# Create a global print manager instance for convenience
printer = PrintManager()
