"""
Pipeline components for downloading and importing IMDb datasets.

Modules:
    catalog: Ordered dataset descriptors imported on every run
    streams: Bounded-buffer stream stages, file source and sink
    runner: Orchestrator driving fetch -> extract -> load per dataset

Subpackages:
    extractors: HTTP fetcher streaming remote files to staging
    transformers: Decompress / parse / transform / re-encode stages
    loaders: PostgreSQL loader using COPY FROM STDIN

Architecture:
    Each dataset flows strictly downstream:

    1. Fetch - remote bytes -> local compressed file
    2. Extract - compressed file -> header-free TSV file
    3. Load - TSV file -> table (create, truncate, index, COPY)

    Datasets run one after another; the first failure stops the run.

Usage:
    from core.database import create_engine
    from ingestion.runner import ImportRunner

Example:
    engine = create_engine()
    results = await ImportRunner(engine).run()

    for result in results:
        print(f"{result.name}: {result.rows_loaded} rows")

Error Handling:
    Stages raise TransferError, DecodeError or LoadError from
    core.exceptions. Nothing is retried.
"""

__all__ = [
    "DATASETS",
    "ImportRunner",
    "HTTPFetcher",
    "TSVTransformer",
    "PostgresLoader",
]
