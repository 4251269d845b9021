"""
Load transformed TSV files into PostgreSQL with COPY FROM STDIN
"""

from pathlib import Path
from typing import List, Optional, Union
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine
from core.config import settings
from core.exceptions import LoadError, SchemaProvisioningError, BulkCopyError
from ingestion.streams import read_chunks
from schemas.dataset import DatasetDescriptor
import logging
import time

logger = logging.getLogger(__name__)


def build_create_table_sql(dataset: DatasetDescriptor) -> str:
    return f"CREATE TABLE IF NOT EXISTS {dataset.name}({','.join(dataset.columns)});"


def build_truncate_sql(dataset: DatasetDescriptor) -> str:
    return f"TRUNCATE {dataset.name};"


def build_index_sql(dataset: DatasetDescriptor, column: str) -> str:
    return (
        f"CREATE INDEX IF NOT EXISTS idx_{dataset.name}_{column} "
        f"ON {dataset.name}({column});"
    )


def build_provisioning_sql(dataset: DatasetDescriptor) -> List[str]:
    """Statements run before COPY, in execution order"""
    statements = [build_create_table_sql(dataset), build_truncate_sql(dataset)]
    statements.extend(build_index_sql(dataset, column) for column in dataset.indexes)
    return statements


def parse_copy_status(status: str) -> int:
    """Row count from a ``COPY <n>`` command tag"""
    try:
        return int(status.split()[-1])
    except (AttributeError, IndexError, ValueError):
        logger.warning(f"Unexpected COPY status: {status!r}")
        return 0


class PostgresLoader:
    """
    Replace a table's contents with a transformed TSV file.

    Ensures:
    - Table and declared indexes exist (create-if-absent, no migration)
    - Prior rows are removed on every run (TRUNCATE)
    - Rows are streamed with the COPY protocol, never held in memory
    - The connection goes back to the pool whatever happens

    Each statement commits on its own (the engine runs in AUTOCOMMIT), so
    atomicity is that of the server's COPY: either every row of the file
    becomes visible or none does.
    """

    def __init__(self, engine: AsyncEngine, chunk_size: Optional[int] = None):
        self.engine = engine
        self.chunk_size = chunk_size or settings.COPY_CHUNK_SIZE

    async def load(self, dataset: DatasetDescriptor, plain_path: Union[str, Path]) -> int:
        """
        Provision ``dataset``'s table and COPY ``plain_path`` into it.

        Args:
            dataset: Descriptor giving table name, columns and indexes
            plain_path: Header-free, tab-delimited file

        Returns:
            Number of rows copied

        Raises:
            SchemaProvisioningError: CREATE TABLE, TRUNCATE or CREATE INDEX failed
            BulkCopyError: COPY rejected the stream
            LoadError: No connection could be acquired
        """
        logger.info(f"Starting data import {dataset.name}")
        started = time.monotonic()

        try:
            async with self.engine.connect() as conn:
                for statement in build_provisioning_sql(dataset):
                    await self._execute_ddl(conn, dataset, statement)
                rows_loaded = await self._copy(conn, dataset, plain_path)

        except LoadError:
            raise

        except (SQLAlchemyError, OSError) as e:
            raise LoadError(
                "Failed to acquire database connection",
                context={"table_name": dataset.name},
                original_exception=e
            )

        logger.info(
            f"Data import completed {dataset.name} "
            f"({rows_loaded} rows in {time.monotonic() - started:.1f}s)"
        )
        return rows_loaded

    async def _execute_ddl(self, conn: AsyncConnection, dataset: DatasetDescriptor, statement: str):
        logger.debug(f"Executing: {statement}")
        try:
            # exec_driver_sql: column definitions may contain ':' which text() would bind
            await conn.exec_driver_sql(statement)
        except SQLAlchemyError as e:
            raise SchemaProvisioningError(
                f"Schema statement failed for {dataset.name}",
                context={"table_name": dataset.name, "statement": statement},
                original_exception=e
            )

    async def _copy(self, conn: AsyncConnection, dataset: DatasetDescriptor, plain_path: Union[str, Path]) -> int:
        context = {"table_name": dataset.name, "file_path": str(plain_path)}
        source = read_chunks(plain_path, self.chunk_size)
        try:
            raw = await conn.get_raw_connection()
            # asyncpg connection; issues COPY "<name>" FROM STDIN
            status = await raw.driver_connection.copy_to_table(dataset.name, source=source)
        except Exception as e:
            raise BulkCopyError(
                f"COPY into {dataset.name} failed",
                context=context,
                original_exception=e
            )
        finally:
            await source.aclose()

        return parse_copy_status(status)
