"""
Install-Script Provider.

Looks up the install entry for a software name in the application
repository and pairs it with the packaged install script template.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from patchops.core.errors import ConfigurationError, InstallScriptNotFound
from patchops.models.patching import ApplicationRepo

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class InstallScript:
    """Script template plus the entry it installs."""

    script_content: str
    install_command: str
    vendor: str
    version: Optional[str] = None


class InstallScriptProvider(Protocol):
    async def resolve(self, software_name: str) -> InstallScript:
        ...


def load_script_template(path: str) -> str:
    """Read the install script template from disk."""
    script_path = Path(path)
    if not script_path.is_file():
        raise ConfigurationError(f"Install script template not found: {script_path}")
    return script_path.read_text(encoding="utf-8")


class SqlInstallScriptProvider:
    """Resolves install entries from the ``application_repo`` table."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        script_template: str,
        os_platform: str = "Windows",
    ):
        self.session_factory = session_factory
        self.script_template = script_template
        self.os_platform = os_platform

    async def resolve(self, software_name: str) -> InstallScript:
        """
        Return the newest active entry for ``software_name`` on this platform.

        Raises:
            InstallScriptNotFound: No active entry is registered
        """
        query = (
            select(ApplicationRepo)
            .where(
                ApplicationRepo.software_name == software_name,
                ApplicationRepo.os_platform == self.os_platform,
                ApplicationRepo.is_active.is_(True),
            )
            .order_by(ApplicationRepo.created_at.desc(), ApplicationRepo.id.desc())
            .limit(1)
        )
        async with self.session_factory() as session:
            entry = await session.scalar(query)

        if entry is None:
            logger.warning("No install entry registered", software=software_name, os_platform=self.os_platform)
            raise InstallScriptNotFound(software_name)

        return InstallScript(
            script_content=self.script_template,
            install_command=entry.install_cmd,
            vendor=entry.vendor,
            version=entry.version,
        )
