"""
Machine Registry.

Resolves machine names to execution contexts for one scheduling cycle.
The registry snapshot is fetched at most once per instance and never
shared across cycles.
"""

import asyncio
from typing import Awaitable, Callable, Dict, List, Optional

import structlog

from patchops.core.errors import DiscoveryUnavailable, MachineNotFound, ResolutionError
from patchops.schemas.inventory import ExecutionContext, MachineRecord

logger = structlog.get_logger(__name__)


class MachineRegistry:
    """Per-cycle machine snapshot with exact, case-sensitive name lookup."""

    def __init__(self, loader: Callable[[], Awaitable[List[MachineRecord]]]):
        self._loader = loader
        self._lock = asyncio.Lock()
        self._machines: Optional[Dict[str, MachineRecord]] = None
        self._load_error: Optional[DiscoveryUnavailable] = None

    async def _snapshot(self) -> Dict[str, MachineRecord]:
        async with self._lock:
            if self._load_error is not None:
                raise self._load_error
            if self._machines is None:
                try:
                    machines = await self._loader()
                except DiscoveryUnavailable as e:
                    self._load_error = e
                    raise
                snapshot: Dict[str, MachineRecord] = {}
                for machine in machines:
                    snapshot.setdefault(machine.machine_name, machine)
                self._machines = snapshot
                logger.debug("Machine registry snapshot loaded", machines=len(snapshot))
            return self._machines

    async def resolve(self, machine_name: str) -> ExecutionContext:
        """
        Return the execution context for ``machine_name``.

        Raises:
            MachineNotFound: No machine with exactly this name
            ResolutionError: The registry could not be queried this cycle
        """
        try:
            snapshot = await self._snapshot()
        except DiscoveryUnavailable as e:
            raise ResolutionError(
                f"Cannot resolve machine '{machine_name}': registry unavailable ({e.message})"
            ) from e

        machine = snapshot.get(machine_name)
        if machine is None:
            raise MachineNotFound(machine_name)
        return machine.context
