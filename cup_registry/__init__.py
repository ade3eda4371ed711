"""Package registry and update server."""

from .manifest import (
    FileEntry,
    FolderEntry,
    MetadataEntry,
    PackageDefinition,
    definition_to_dict,
    load_definition,
    parse_definition,
)
from .registry import (
    DefinitionError,
    Package,
    PackageMetadata,
    PackageRegistry,
    RegistryBuild,
    RegistrySnapshot,
    build_registry,
    resolve_definition,
)
from .server import UpdateServer, answer_query

__all__ = [
    "FileEntry",
    "FolderEntry",
    "MetadataEntry",
    "PackageDefinition",
    "definition_to_dict",
    "load_definition",
    "parse_definition",
    "DefinitionError",
    "Package",
    "PackageMetadata",
    "PackageRegistry",
    "RegistryBuild",
    "RegistrySnapshot",
    "build_registry",
    "resolve_definition",
    "UpdateServer",
    "answer_query",
]
