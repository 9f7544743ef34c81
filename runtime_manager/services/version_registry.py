"""
Version registry: persisted rows for known runtime binary versions.

Pure data access over the claude_binary_versions table. Guards that must
hold before any mutation (deleting active/bundled rows, activating unknown
versions) raise inside the transaction so nothing is written.
"""
import logging
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.exceptions import ProtectedVersionError, VersionNotFoundError
from ..db.models import ClaudeBinaryVersion, utcnow

logger = logging.getLogger(__name__)

_COLUMNS = {
    "platform", "path", "checksum", "size", "downloaded_at", "is_active", "is_bundled",
}


class VersionRegistry:
    """CRUD and exclusive activation for ClaudeBinaryVersion rows."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def upsert(
        self,
        version_id: str,
        values: dict[str, Any],
        on_conflict: Optional[dict[str, Any]] = None,
    ) -> ClaudeBinaryVersion:
        """
        Insert a row, or update an existing one with the same id.

        Args:
            version_id: Semver id of the row.
            values: Column values for a new row.
            on_conflict: Columns to overwrite when the row already exists.
                Defaults to every column in values except is_active, so an
                upsert never changes which version is active.

        Returns:
            The row as stored after the upsert.
        """
        unknown = (set(values) | set(on_conflict or {})) - _COLUMNS
        if unknown:
            raise ValueError(f"Unknown version columns: {sorted(unknown)}")

        if on_conflict is None:
            on_conflict = {k: v for k, v in values.items() if k != "is_active"}
        now = utcnow()

        stmt = sqlite_insert(ClaudeBinaryVersion).values(
            id=version_id, created_at=now, updated_at=now, **values
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[ClaudeBinaryVersion.id],
            set_={**on_conflict, "updated_at": now},
        )

        async with self._session_factory() as db:
            await db.execute(stmt)
            await db.commit()
            row = await db.get(ClaudeBinaryVersion, version_id, populate_existing=True)

        logger.debug(f"Upserted version row {version_id}")
        return row

    async def get(self, version_id: str) -> Optional[ClaudeBinaryVersion]:
        async with self._session_factory() as db:
            return await db.get(ClaudeBinaryVersion, version_id)

    async def get_active(self) -> Optional[ClaudeBinaryVersion]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(ClaudeBinaryVersion).where(ClaudeBinaryVersion.is_active.is_(True))
            )
            return result.scalars().first()

    async def list_all(self) -> list[ClaudeBinaryVersion]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(ClaudeBinaryVersion).order_by(ClaudeBinaryVersion.created_at)
            )
            return list(result.scalars().all())

    async def delete(self, version_id: str) -> ClaudeBinaryVersion:
        """
        Delete a row and return it as it was.

        Raises:
            VersionNotFoundError: If no row has this id.
            ProtectedVersionError: If the row is bundled or active.
        """
        async with self._session_factory() as db:
            async with db.begin():
                row = await db.get(ClaudeBinaryVersion, version_id)
                if row is None:
                    raise VersionNotFoundError(f"Version {version_id} not found")
                if row.is_bundled:
                    raise ProtectedVersionError("Cannot delete bundled version")
                if row.is_active:
                    raise ProtectedVersionError(
                        "Cannot delete active version. Switch to another version first."
                    )
                await db.delete(row)

        logger.debug(f"Deleted version row {version_id}")
        return row

    async def set_active_exclusive(self, version_id: str) -> None:
        """
        Make version_id the only active row, in a single transaction.

        Raises:
            VersionNotFoundError: If no row has this id (nothing is changed).
        """
        async with self._session_factory() as db:
            async with db.begin():
                row = await db.get(ClaudeBinaryVersion, version_id)
                if row is None:
                    raise VersionNotFoundError(
                        f"Version {version_id} not found. Download it first."
                    )
                await db.execute(
                    update(ClaudeBinaryVersion)
                    .where(ClaudeBinaryVersion.is_active.is_(True))
                    .values(is_active=False)
                )
                await db.execute(
                    update(ClaudeBinaryVersion)
                    .where(ClaudeBinaryVersion.id == version_id)
                    .values(is_active=True, updated_at=utcnow())
                )

        logger.debug(f"Version {version_id} is now the only active row")
