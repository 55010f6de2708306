"""
Spyglass - loaded-file model for a .NET and PE inspection tool

Classifies files as managed modules, native PE images or unrecognized
binaries, and exposes all three through one LoadedFile type.
"""

__version__ = "0.1.0"

from spyglass.core.files import FileKind, LoadedFile
from spyglass.loaders.factory import FileLoader, load_from_module, load_from_path

__all__ = [
    "FileKind",
    "FileLoader",
    "LoadedFile",
    "load_from_module",
    "load_from_path",
    "__version__",
]
