"""
Exception types for the provisioning workflow.
Each error kind carries the process exit code the CLI reports for it.
"""

import os

EXIT_SUCCESS = os.EX_OK
EXIT_USAGE = os.EX_USAGE
EXIT_ACTION_FAILED = os.EX_SOFTWARE
EXIT_MISSING_OS_RESOURCE = os.EX_OSFILE
EXIT_NO_PERMISSION = os.EX_NOPERM
EXIT_INTERRUPTED = 130


class ProvisioningError(Exception):
    """Base exception for provisioning errors."""

    def __init__(self, exit_code: int, message: str, context: dict | None = None):
        """
        Initialize provisioning error.

        Args:
            exit_code: Process exit code reported by the CLI
            message: Human-readable error message
            context: Additional context dict with details
        """
        self.exit_code = exit_code
        self.message = message
        self.context = context or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        """Return formatted error string for logging."""
        context_str = f" | Context: {self.context}" if self.context else ""
        return f"{self.message}{context_str}"


class UsageError(ProvisioningError):
    """64: Bad command line argument."""

    def __init__(self, message: str = "Invalid usage", context: dict | None = None):
        super().__init__(EXIT_USAGE, message, context)


class PreconditionError(ProvisioningError):
    """Host does not meet the requirements to start the workflow."""


class PermissionDenied(PreconditionError):
    """77: Not running with elevated privilege."""

    def __init__(self, message: str = "Must be run as root", context: dict | None = None):
        super().__init__(EXIT_NO_PERMISSION, message, context)


class UnsupportedPlatform(PreconditionError):
    """72: Host platform is not supported or an OS resource is missing."""

    def __init__(self, message: str = "Unsupported platform", context: dict | None = None):
        super().__init__(EXIT_MISSING_OS_RESOURCE, message, context)


class ActionFailure(ProvisioningError):
    """70: An external tool failed while applying an action."""

    def __init__(self, action: str, detail: str, context: dict | None = None):
        self.action = action
        self.detail = detail
        super().__init__(EXIT_ACTION_FAILED, f"{action} failed: {detail}", context)


class WorkflowInterrupted(ProvisioningError):
    """130: Operator interrupted the run at a prompt."""

    def __init__(self, message: str = "Interrupted by operator", context: dict | None = None):
        super().__init__(EXIT_INTERRUPTED, message, context)


class ActionError(Exception):
    """Raised by an action that fails without an external tool result."""

    pass


class AuditLogError(Exception):
    """Raised on writes to a finalized audit log."""

    pass


class TemplateRenderError(Exception):
    """Raised when template rendering fails."""

    pass
