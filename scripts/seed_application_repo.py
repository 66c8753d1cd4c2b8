"""
Application Repository Seed Script.

Seeds the default install entries into ``application_repo``.
"""

import asyncio

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from patchops.core.database import async_session_factory, close_db, init_db
from patchops.models.patching import ApplicationRepo


DEFAULT_ENTRIES = [
    {
        "software_name": "Google Chrome",
        "version": "120.0.6099.109",
        "install_cmd": "https://dl.google.com/chrome/install/ChromeStandaloneSetup64.exe /silent /install",
        "vendor": "Google",
    },
    {
        "software_name": "Mozilla Firefox",
        "version": "121.0",
        "install_cmd": "https://download.mozilla.org/?product=firefox-latest&os=win64&lang=en-US /S",
        "vendor": "Mozilla",
    },
    {
        "software_name": "Java Runtime Environment",
        "version": "21.0.1",
        "install_cmd": "https://download.oracle.com/java/21/latest/jdk-21_windows-x64_bin.exe /s",
        "vendor": "Oracle",
    },
]


async def seed_application_repo(session: AsyncSession, os_platform: str = "Windows") -> int:
    """Insert default entries that are not present yet."""
    count = 0

    for entry in DEFAULT_ENTRIES:
        stmt = select(ApplicationRepo).where(
            ApplicationRepo.software_name == entry["software_name"],
            ApplicationRepo.version == entry["version"],
            ApplicationRepo.os_platform == os_platform,
        )
        existing = (await session.execute(stmt)).scalar_one_or_none()

        if existing:
            print(f"  - '{entry['software_name']} {entry['version']}' already exists, skipping")
            continue

        session.add(ApplicationRepo(os_platform=os_platform, architecture="x64", **entry))
        count += 1
        print(f"  + Created entry: {entry['software_name']} {entry['version']}")

    return count


async def main():
    """Main seed function."""
    print("=" * 60)
    print("Application Repository Seed Script")
    print("=" * 60)

    await init_db()

    async with async_session_factory() as session:
        try:
            created = await seed_application_repo(session)
            await session.commit()
            print(f"\nSeed completed successfully, entries created: {created}")
        except Exception as e:
            print(f"\nError during seeding: {e}")
            await session.rollback()
            raise

    await close_db()


if __name__ == "__main__":
    asyncio.run(main())
