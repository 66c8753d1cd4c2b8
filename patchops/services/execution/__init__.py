"""
Remote Execution Services Package.
"""

from patchops.services.execution.run_command import (
    ExecutionOutcome,
    ExecutionState,
    OperationHandle,
    RemoteCommandExecutor,
)
from patchops.services.execution.templating import ScriptParameters, render_script

__all__ = [
    "ExecutionOutcome",
    "ExecutionState",
    "OperationHandle",
    "RemoteCommandExecutor",
    "ScriptParameters",
    "render_script",
]
