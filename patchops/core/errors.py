"""
Error taxonomy for patch orchestration.

Cycle-scoped errors (configuration, discovery) propagate to the caller.
Job-scoped errors are carried as an ``ErrorKind`` on results so the
scheduler can branch on them without unwinding across job boundaries.
"""

import enum


class ErrorKind(str, enum.Enum):
    """Tagged error kinds carried on job results and execution outcomes."""

    CONFIGURATION = "configuration"
    DISCOVERY_UNAVAILABLE = "discovery_unavailable"
    RESOLUTION = "resolution"
    SUBMISSION = "submission"
    EXECUTION = "execution"
    TIMEOUT = "timeout"
    INTERNAL = "internal"


class PatchOpsError(Exception):
    """Base exception for patch orchestration errors."""

    kind = ErrorKind.INTERNAL

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigurationError(PatchOpsError):
    """Required coordinates are missing. Fatal at startup."""

    kind = ErrorKind.CONFIGURATION


class DiscoveryUnavailable(PatchOpsError):
    """Registry or inventory query exhausted its retries."""

    kind = ErrorKind.DISCOVERY_UNAVAILABLE


class ResolutionError(PatchOpsError):
    """A machine or software name could not be resolved for one job."""

    kind = ErrorKind.RESOLUTION


class MachineNotFound(ResolutionError):
    """No registry entry for the machine name."""

    def __init__(self, machine_name: str):
        super().__init__(f"Machine '{machine_name}' not found in the machine registry")
        self.machine_name = machine_name


class InstallScriptNotFound(ResolutionError):
    """No install entry registered for the software name."""

    def __init__(self, software_name: str):
        super().__init__(f"No install entry registered for software '{software_name}'")
        self.software_name = software_name


class SubmissionError(PatchOpsError):
    """The remote command channel rejected the command."""

    kind = ErrorKind.SUBMISSION


class ExecutionFailure(PatchOpsError):
    """The remote script finished unsuccessfully."""

    kind = ErrorKind.EXECUTION


class PatchTimeoutError(PatchOpsError):
    """The poll window elapsed before the remote side reached a terminal state."""

    kind = ErrorKind.TIMEOUT


class TemplateError(ResolutionError):
    """Script parameters could not be rendered safely into the template."""
