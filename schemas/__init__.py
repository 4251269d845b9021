"""
Pydantic schemas for the import pipeline.

Schemas:
    dataset: Dataset descriptors, staging artifacts, row transform
             strategies and per-dataset run results

Usage:
    from schemas.dataset import DatasetDescriptor, ProjectionTransform

Example:
    descriptor = DatasetDescriptor(
        name="title_ratings",
        remote_file="title.ratings.tsv.gz",
        columns=["tconst TEXT", "averageRating REAL", "numVotes INTEGER"],
        indexes=["tconst"],
    )
    assert descriptor.column_names == ("tconst", "averageRating", "numVotes")
"""

__all__ = [
    "DatasetDescriptor",
    "DatasetRunResult",
    "DatasetState",
    "StagingArtifact",
    "RowTransform",
    "IdentityTransform",
    "FunctionTransform",
    "ProjectionTransform",
]
