"""
Pydantic schemas for dataset descriptors, staging artifacts and row transforms
"""

from abc import ABC, abstractmethod
from pathlib import Path, PurePosixPath
from typing import Callable, Dict, Iterable, Tuple, Union
from pydantic import BaseModel, Field, validator
import enum
import re

Record = Dict[str, str]

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
# Unquoted DDL folds table names to lower case while COPY quotes them
_TABLE_NAME = re.compile(r"^[a-z_][a-z0-9_]*$")


# ============================================================================
# Row transforms
# ============================================================================

class RowTransform(ABC):
    """
    Strategy mapping one parsed record to one output record.

    Implementations must be pure: the same input record always yields the
    same output and no state is carried between rows. The key order of the
    returned mapping is the column order written to the transformed file.
    """

    @abstractmethod
    def __call__(self, record: Record) -> Record:
        pass

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"


class IdentityTransform(RowTransform):
    """Pass records through unchanged."""

    def __call__(self, record: Record) -> Record:
        return record


class FunctionTransform(RowTransform):
    """Adapt a plain callable to the RowTransform interface."""

    def __init__(self, func: Callable[[Record], Record], name: str = ""):
        self.func = func
        self.name = name or getattr(func, "__name__", "transform")

    def __call__(self, record: Record) -> Record:
        return self.func(record)

    def __repr__(self) -> str:
        return f"FunctionTransform({self.name})"


class ProjectionTransform(RowTransform):
    """Keep only the given fields, in the given order."""

    def __init__(self, fields: Iterable[str]):
        self.fields = tuple(fields)
        if not self.fields:
            raise ValueError("ProjectionTransform needs at least one field")

    def __call__(self, record: Record) -> Record:
        return {field: record[field] for field in self.fields}

    def __repr__(self) -> str:
        return f"ProjectionTransform({', '.join(self.fields)})"


# ============================================================================
# Pipeline state
# ============================================================================

class DatasetState(str, enum.Enum):
    """Per-dataset pipeline state"""
    PENDING = "pending"
    DOWNLOADING = "downloading"
    EXTRACTING = "extracting"
    IMPORTING = "importing"
    CLEANED = "cleaned"
    DONE = "done"
    FAILED = "failed"


# ============================================================================
# Descriptors
# ============================================================================

class StagingArtifact(BaseModel):
    """Pair of local files holding one dataset's intermediate forms."""

    compressed_path: Path
    plain_path: Path

    def remove(self) -> None:
        """Delete both staging files; missing files are ignored."""
        self.compressed_path.unlink(missing_ok=True)
        self.plain_path.unlink(missing_ok=True)

    class Config:
        frozen = True


class DatasetDescriptor(BaseModel):
    """
    Static metadata driving table shape, indexing and row transform for one
    remote dataset file.

    ``columns`` holds full SQL column definitions (``"tconst TEXT"``) in
    table order; ``indexes`` holds bare column names.
    """

    name: str = Field(..., min_length=1, max_length=63)
    remote_file: str = Field(..., min_length=1)
    columns: Tuple[str, ...]
    indexes: Tuple[str, ...] = ()
    transform: RowTransform = Field(default_factory=IdentityTransform)

    @validator("name")
    def validate_name(cls, v):
        """Table names are interpolated into DDL, so keep them plain"""
        if not _TABLE_NAME.match(v):
            raise ValueError(f"Dataset name is not a lower-case SQL identifier: {v!r}")
        return v

    @validator("remote_file")
    def validate_remote_file(cls, v):
        """Remote file must be a bare relative path segment"""
        path = PurePosixPath(v.lstrip("/"))
        if not path.parts or ".." in path.parts:
            raise ValueError(f"Invalid remote file path: {v!r}")
        return str(path)

    @validator("columns")
    def validate_columns(cls, v):
        """At least one column definition is required"""
        cleaned = tuple(c.strip() for c in v if c and c.strip())
        if not cleaned:
            raise ValueError("Dataset needs at least one column definition")
        return cleaned

    @validator("indexes", pre=True)
    def validate_indexes(cls, v):
        """De-duplicate index columns, keeping first occurrence"""
        if v is None:
            return ()
        if isinstance(v, str):
            raise ValueError(f"Indexes must be a sequence of column names, not a string: {v!r}")
        seen = []
        for column in v:
            if not _IDENTIFIER.match(column):
                raise ValueError(f"Index column is not a plain SQL identifier: {column!r}")
            if column not in seen:
                seen.append(column)
        return tuple(seen)

    @validator("indexes")
    def check_indexes_declared(cls, v, values):
        """Every index column must be one of the declared columns"""
        columns = values.get("columns")
        if columns is None:
            return v
        declared = {c.split()[0] for c in columns}
        unknown = [column for column in v if column not in declared]
        if unknown:
            raise ValueError(f"Index columns not declared in columns: {unknown}")
        return v

    @validator("transform", pre=True)
    def validate_transform(cls, v):
        """Absent transform means identity; bare callables are wrapped"""
        if v is None:
            return IdentityTransform()
        if isinstance(v, RowTransform):
            return v
        if callable(v):
            return FunctionTransform(v)
        raise ValueError(f"Unsupported transform: {v!r}")

    @property
    def column_names(self) -> Tuple[str, ...]:
        """Bare column names in table order"""
        return tuple(c.split()[0] for c in self.columns)

    def source_url(self, base_url: str) -> str:
        """Full download URL for this dataset"""
        return f"{base_url.rstrip('/')}/{self.remote_file}"

    def staging_paths(self, staging_dir: Union[str, Path]) -> StagingArtifact:
        """Deterministic staging file paths derived from the remote file name"""
        compressed = Path(staging_dir) / self.remote_file
        if compressed.suffix == ".gz":
            plain = compressed.with_suffix("")
        else:
            plain = compressed.with_name(compressed.name + ".tsv")
        return StagingArtifact(compressed_path=compressed, plain_path=plain)

    class Config:
        frozen = True
        arbitrary_types_allowed = True


class DatasetRunResult(BaseModel):
    """Outcome of one dataset's pipeline"""
    name: str
    state: DatasetState = DatasetState.PENDING
    bytes_downloaded: int = 0
    rows_written: int = 0
    rows_loaded: int = 0
    duration_seconds: float = 0.0
