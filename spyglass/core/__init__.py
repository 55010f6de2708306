"""Core Spyglass components."""

from spyglass.core.annotations import AnnotationStore
from spyglass.core.config import LoaderConfig, OutputConfig, SpyglassConfig
from spyglass.core.files import (
    Backing,
    ContentKey,
    FileKind,
    FilenameKey,
    ImageBacking,
    LoadedFile,
    ModuleBacking,
    UnrecognizedBacking,
    short_name_for,
)
from spyglass.core.result import Err, Ok, Result

__all__ = [
    "AnnotationStore",
    "Backing",
    "ContentKey",
    "Err",
    "FileKind",
    "FilenameKey",
    "ImageBacking",
    "LoadedFile",
    "LoaderConfig",
    "ModuleBacking",
    "Ok",
    "OutputConfig",
    "Result",
    "SpyglassConfig",
    "UnrecognizedBacking",
    "short_name_for",
]
