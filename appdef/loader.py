"""Resource loader for seeding a store from the filesystem.

This module provides the ResourceLoader class which reads YAML or JSON
documents from files and directories and writes them into a Store, where the
controller picks them up like any other change.

Loading rules:
- Multi-document YAML files are supported, empty documents are skipped
- Directories are walked in sorted order so loading is deterministic
- Objects are applied with a dedicated field manager, so loading the same
  files again is a no-op
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, AsyncGenerator

import aiofiles
import yaml

from appdef.exceptions import AppDefException, InvalidObjectError
from appdef.manifest import NamedResource, object_id
from appdef.store import Store

__all__ = ["ResourceLoader", "LoadOptions"]

_LOGGER = logging.getLogger(__name__)

LOADER_FIELD_MANAGER = "appdef-loader"

_SUFFIXES = (".yaml", ".yml", ".json")


@dataclass
class LoadOptions:
    """Options for loading resources into the store.

    Attributes:
        path: A manifest file, or a directory of manifest files.
        recursive: Descend into subdirectories when path is a directory.
        namespace: Namespace given to objects that have none.
    """

    path: Path
    recursive: bool = True
    namespace: str | None = None

    def __post_init__(self) -> None:
        """Resolve the path after initialization."""
        self.path = Path(self.path).expanduser().resolve()


class ResourceLoader:
    """Loads resources from the filesystem into a store."""

    def __init__(self, store: Store, field_manager: str = LOADER_FIELD_MANAGER) -> None:
        """Initialize the ResourceLoader.

        Args:
            store: The store objects are applied to.
            field_manager: Owner recorded for the fields of loaded objects.
        """
        self._store = store
        self._field_manager = field_manager

    async def load(self, options: LoadOptions) -> list[NamedResource]:
        """Apply every document found at the path to the store.

        Returns:
            The identities of the loaded objects, in load order.

        Raises:
            AppDefException: If a file cannot be read or parsed, or the store
                rejects an object.
        """
        _LOGGER.info("Loading resources from %s", options.path)
        loaded = []
        async for doc in self.read(options):
            if options.namespace:
                doc.setdefault("metadata", {}).setdefault("namespace", options.namespace)
            result = await self._store.apply(doc, self._field_manager)
            resource_id = object_id(result)
            _LOGGER.debug("Loaded %s %s", resource_id.kind, resource_id.namespaced_name)
            loaded.append(resource_id)
        _LOGGER.info("Finished loading %d resources", len(loaded))
        return loaded

    async def read(self, options: LoadOptions) -> AsyncGenerator[dict[str, Any], None]:
        """Yield the documents found at the path without touching the store."""
        if not options.path.exists():
            raise AppDefException(f"Path does not exist: {options.path}")
        if options.path.is_file():
            async for doc in self._read_file(options.path):
                yield doc
        elif options.path.is_dir():
            async for doc in self._read_directory(options.path, options):
                yield doc
        else:
            raise AppDefException(f"Path is not a file or directory: {options.path}")

    async def _read_directory(
        self, path: Path, options: LoadOptions
    ) -> AsyncGenerator[dict[str, Any], None]:
        _LOGGER.debug("Loading directory: %s", path)
        for entry in sorted(path.iterdir()):
            if entry.is_file() and entry.suffix.lower() in _SUFFIXES:
                async for doc in self._read_file(entry):
                    yield doc
            elif options.recursive and entry.is_dir():
                async for doc in self._read_directory(entry, options):
                    yield doc

    async def _read_file(self, path: Path) -> AsyncGenerator[dict[str, Any], None]:
        """Yield the documents of a file.

        Raises:
            AppDefException: If there's an error reading or parsing the file.
        """
        _LOGGER.debug("Processing file: %s", path)
        try:
            async with aiofiles.open(str(path), encoding="utf-8") as f:
                content = await f.read()
        except OSError as err:
            raise AppDefException(f"Failed to read file {path}: {err}") from err

        try:
            docs = list(yaml.safe_load_all(content))
        except yaml.YAMLError as err:
            raise AppDefException(f"Invalid YAML in file {path}: {err}") from err

        for index, doc in enumerate(docs):
            if not doc:
                continue
            if not isinstance(doc, dict):
                raise InvalidObjectError(
                    f"Document {index} in file {path} is not a mapping"
                )
            yield doc
