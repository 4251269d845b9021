# ============================================================================
# File: ingestion/runner.py
# Description: Sequential download -> extract -> import orchestrator
# ============================================================================
"""
Import Runner - drives every catalog dataset through the pipeline.

For each dataset, strictly one at a time and in catalog order:

    PENDING -> DOWNLOADING -> EXTRACTING -> IMPORTING -> CLEANED -> DONE

Any stage failure moves the dataset to FAILED and ends the whole run
(fail-fast): the error is logged once, re-raised unchanged, and no later
dataset is attempted. The connection pool is disposed exactly once, after
the last dataset or the failure.
"""

from pathlib import Path
from typing import Dict, FrozenSet, Iterable, List, Optional, Union
from sqlalchemy.ext.asyncio import AsyncEngine
import logging
import time

from core.config import settings
from core.exceptions import ETLException
from ingestion.catalog import DATASETS
from ingestion.extractors.http_fetcher import HTTPFetcher
from ingestion.loaders.postgres_loader import PostgresLoader
from ingestion.transformers.tsv_transformer import TSVTransformer
from schemas.dataset import DatasetDescriptor, DatasetRunResult, DatasetState, StagingArtifact

logger = logging.getLogger(__name__)

_TRANSITIONS: Dict[DatasetState, FrozenSet[DatasetState]] = {
    DatasetState.PENDING: frozenset({DatasetState.DOWNLOADING, DatasetState.FAILED}),
    DatasetState.DOWNLOADING: frozenset({DatasetState.EXTRACTING, DatasetState.FAILED}),
    DatasetState.EXTRACTING: frozenset({DatasetState.IMPORTING, DatasetState.FAILED}),
    DatasetState.IMPORTING: frozenset({DatasetState.CLEANED, DatasetState.FAILED}),
    DatasetState.CLEANED: frozenset({DatasetState.DONE, DatasetState.FAILED}),
    DatasetState.DONE: frozenset(),
    DatasetState.FAILED: frozenset(),
}


class ImportRunner:
    """
    Sequential import orchestrator.

    Responsibilities:
    - Create the staging directory
    - Run fetch -> extract -> load for each dataset in order
    - Delete staging files after every successful import
    - Stop at the first failure and re-raise it
    - Dispose the connection pool exactly once
    """

    def __init__(
        self,
        engine: AsyncEngine,
        datasets: Iterable[DatasetDescriptor] = DATASETS,
        fetcher: Optional[HTTPFetcher] = None,
        transformer: Optional[TSVTransformer] = None,
        loader: Optional[PostgresLoader] = None,
        staging_dir: Optional[Union[str, Path]] = None,
        base_url: Optional[str] = None
    ):
        self.engine = engine
        self.datasets = tuple(datasets)
        self.fetcher = fetcher or HTTPFetcher()
        self.transformer = transformer or TSVTransformer()
        self.loader = loader or PostgresLoader(engine)
        self.staging_dir = Path(staging_dir or settings.STAGING_DIR)
        self.base_url = base_url or settings.DATASETS_BASE_URL
        self.results: List[DatasetRunResult] = []
        self._finished = False

    async def run(self) -> List[DatasetRunResult]:
        """
        Import every dataset in the catalog.

        Returns:
            One DatasetRunResult per dataset, all in state DONE

        Raises:
            TransferError: A download failed
            DecodeError: Decompression, parsing or a row transform failed
            LoadError: DDL or COPY failed
        """
        if self._finished:
            raise RuntimeError("ImportRunner.run() may only be called once; the pool is disposed")

        try:
            self.staging_dir.mkdir(parents=True, exist_ok=True)

            for dataset in self.datasets:
                self.results.append(await self.run_dataset(dataset))

            total_rows = sum(r.rows_loaded for r in self.results)
            logger.info(
                f"ETL process completed successfully: {len(self.results)} datasets, "
                f"{total_rows} rows loaded"
            )
            return self.results

        except ETLException as e:
            logger.error(
                f"ETL process failed: {e}",
                extra={"error_context": e.to_dict()}
            )
            raise

        except Exception:
            logger.exception("Unexpected error in ETL process")
            raise

        finally:
            self._finished = True
            await self.engine.dispose()
            logger.info("Database connection pool closed")

    async def run_dataset(self, dataset: DatasetDescriptor) -> DatasetRunResult:
        """Run one dataset through download, extraction and import."""
        result = DatasetRunResult(name=dataset.name)
        staging = dataset.staging_paths(self.staging_dir)
        started = time.monotonic()

        try:
            self._advance(result, DatasetState.DOWNLOADING)
            result.bytes_downloaded = await self.fetcher.download(
                dataset.source_url(self.base_url), staging.compressed_path
            )

            self._advance(result, DatasetState.EXTRACTING)
            result.rows_written = await self.transformer.extract(
                staging.compressed_path, staging.plain_path, dataset.transform
            )

            self._advance(result, DatasetState.IMPORTING)
            result.rows_loaded = await self.loader.load(dataset, staging.plain_path)

            staging.remove()
            self._advance(result, DatasetState.CLEANED)

        except Exception:
            self._advance(result, DatasetState.FAILED)
            result.duration_seconds = time.monotonic() - started
            self.results.append(result)
            self._discard_staging(staging)
            raise

        result.duration_seconds = time.monotonic() - started
        self._advance(result, DatasetState.DONE)
        return result

    def _advance(self, result: DatasetRunResult, state: DatasetState):
        if state not in _TRANSITIONS[result.state]:
            raise RuntimeError(f"Invalid transition for {result.name}: {result.state.value} -> {state.value}")
        logger.debug(f"{result.name}: {result.state.value} -> {state.value}")
        result.state = state

    def _discard_staging(self, staging: StagingArtifact):
        """Best-effort removal so a half-written file is never loaded later"""
        try:
            staging.remove()
        except OSError as e:
            logger.warning(f"Could not remove staging files {staging.compressed_path}, {staging.plain_path}: {e}")
