"""Image, module and symbol loaders."""

from spyglass.loaders.factory import FileLoader, is_managed, load_from_module, load_from_path
from spyglass.loaders.image import (
    CLR_DIRECTORY_INDEX,
    CLR_HEADER_MIN_SIZE,
    DataDirectory,
    ImageParser,
    ImageRef,
    LiefImage,
    LiefImageParser,
)
from spyglass.loaders.module import (
    AssemblyRef,
    AssemblyResolver,
    DnfileModule,
    DnfileModuleParser,
    ModuleContext,
    ModuleParser,
    ModuleRef,
    TokenResolver,
    TypeInfo,
    build_module_context,
)
from spyglass.loaders.symbols import SymbolData, SymbolFormat, read_symbols, symbol_path_for

__all__ = [
    "AssemblyRef",
    "AssemblyResolver",
    "CLR_DIRECTORY_INDEX",
    "CLR_HEADER_MIN_SIZE",
    "DataDirectory",
    "DnfileModule",
    "DnfileModuleParser",
    "FileLoader",
    "ImageParser",
    "ImageRef",
    "LiefImage",
    "LiefImageParser",
    "ModuleContext",
    "ModuleParser",
    "ModuleRef",
    "SymbolData",
    "SymbolFormat",
    "TokenResolver",
    "TypeInfo",
    "build_module_context",
    "is_managed",
    "load_from_module",
    "load_from_path",
    "read_symbols",
    "symbol_path_for",
]
