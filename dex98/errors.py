"""
Error types raised by the pipeline.

Environment and validation errors abort a run before (or instead of)
producing any artifacts. QC mismatches are never raised; they are
reported as warnings by the comparator.
"""


class Dex98Error(Exception):
    """Base class for all pipeline errors."""


class EnvironmentCheckError(Dex98Error):
    """A required tool or support file is missing or unusable."""


class ValidationError(Dex98Error, ValueError):
    """An input photo or its filename failed validation."""


class ArchiveWriteError(Dex98Error, OSError):
    """An output artifact or its metadata could not be written."""
