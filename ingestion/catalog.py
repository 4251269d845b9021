"""
Catalog of IMDb non-commercial datasets imported on every run.

Files are served from https://datasets.imdbws.com as gzip-compressed TSV
with a header row; missing values are written as ``\\N``, which COPY reads
as NULL. Comma-separated list fields are turned into PostgreSQL array
literals so they load into ``TEXT[]`` columns.
"""

from typing import Tuple
from ingestion.transformers.tsv_transformer import NULL_MARKER
from schemas.dataset import (
    DatasetDescriptor,
    FunctionTransform,
    ProjectionTransform,
    Record,
)


def to_array_literal(value: str) -> str:
    """``"a,b"`` -> ``"{a,b}"``; NULL stays NULL"""
    if value == NULL_MARKER:
        return value
    return "{" + value + "}"


def _arrays(*fields: str):
    def transform(record: Record) -> Record:
        result = dict(record)
        for field in fields:
            result[field] = to_array_literal(record[field])
        return result
    transform.__name__ = f"arrays({', '.join(fields)})"
    return transform


DATASETS: Tuple[DatasetDescriptor, ...] = (
    DatasetDescriptor(
        name="title_basics",
        remote_file="title.basics.tsv.gz",
        columns=[
            "tconst TEXT",
            "titleType TEXT",
            "primaryTitle TEXT",
            "originalTitle TEXT",
            "isAdult BOOLEAN",
            "startYear INTEGER",
            "endYear INTEGER",
            "runtimeMinutes INTEGER",
            "genres TEXT[]",
        ],
        indexes=["tconst", "titleType", "startYear"],
        transform=FunctionTransform(_arrays("genres")),
    ),
    DatasetDescriptor(
        name="title_akas",
        remote_file="title.akas.tsv.gz",
        columns=[
            "titleId TEXT",
            "ordering INTEGER",
            "title TEXT",
            "region TEXT",
            "language TEXT",
            "types TEXT",
            "attributes TEXT",
            "isOriginalTitle BOOLEAN",
        ],
        indexes=["titleId"],
    ),
    DatasetDescriptor(
        name="title_crew",
        remote_file="title.crew.tsv.gz",
        columns=["tconst TEXT", "directors TEXT[]", "writers TEXT[]"],
        indexes=["tconst"],
        transform=FunctionTransform(_arrays("directors", "writers")),
    ),
    DatasetDescriptor(
        name="title_episode",
        remote_file="title.episode.tsv.gz",
        columns=[
            "tconst TEXT",
            "parentTconst TEXT",
            "seasonNumber INTEGER",
            "episodeNumber INTEGER",
        ],
        indexes=["tconst", "parentTconst"],
    ),
    DatasetDescriptor(
        name="title_principals",
        remote_file="title.principals.tsv.gz",
        columns=[
            "tconst TEXT",
            "ordering INTEGER",
            "nconst TEXT",
            "category TEXT",
            "characters TEXT",
        ],
        indexes=["tconst", "nconst"],
        # job duplicates category for almost every row
        transform=ProjectionTransform(["tconst", "ordering", "nconst", "category", "characters"]),
    ),
    DatasetDescriptor(
        name="title_ratings",
        remote_file="title.ratings.tsv.gz",
        columns=["tconst TEXT", "averageRating REAL", "numVotes INTEGER"],
        indexes=["tconst"],
    ),
    DatasetDescriptor(
        name="name_basics",
        remote_file="name.basics.tsv.gz",
        columns=[
            "nconst TEXT",
            "primaryName TEXT",
            "birthYear INTEGER",
            "deathYear INTEGER",
            "primaryProfession TEXT[]",
            "knownForTitles TEXT[]",
        ],
        indexes=["nconst", "primaryName"],
        transform=FunctionTransform(_arrays("primaryProfession", "knownForTitles")),
    ),
)
