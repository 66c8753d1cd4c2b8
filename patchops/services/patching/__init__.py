"""
Patching Services Package.

Provides job scheduling, job persistence and install-script resolution.
"""

from patchops.services.patching.install_scripts import (
    InstallScript,
    InstallScriptProvider,
    SqlInstallScriptProvider,
)
from patchops.services.patching.job_store import (
    InvalidTransition,
    JobNotFoundError,
    JobStore,
    SqlJobStore,
)
from patchops.services.patching.scheduler import JobScheduler, make_command_id

__all__ = [
    "InstallScript",
    "InstallScriptProvider",
    "InvalidTransition",
    "JobNotFoundError",
    "JobScheduler",
    "JobStore",
    "SqlInstallScriptProvider",
    "SqlJobStore",
    "make_command_id",
]
