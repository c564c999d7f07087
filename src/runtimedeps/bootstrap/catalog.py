"""Declarative catalog of runtime packages and platform selection."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Iterable, List, Set, Tuple

import yaml

from runtimedeps.core.errors import CatalogError
from runtimedeps.core.logging import get_logger
from runtimedeps.core.models import Architecture, OperatingSystem, Package, PlatformInfo

LOGGER = get_logger(__name__)

# Manifest key holding the package list
RUNTIME_DEPENDENCIES_KEY = "runtimeDependencies"


class PackageCatalog:
    """Fixed, ordered list of installable packages.

    Packages are never mutated; selection returns a filtered view in
    declaration order.
    """

    def __init__(self, packages: Iterable[Package]) -> None:
        self._packages: Tuple[Package, ...] = tuple(packages)
        seen: Set[str] = set()
        for package in self._packages:
            if package.description in seen:
                raise CatalogError(f"Duplicate package in catalog: {package.description}")
            seen.add(package.description)

    @classmethod
    def from_entries(cls, entries: List[Dict[str, Any]]) -> "PackageCatalog":
        """Create a catalog from raw dictionaries.

        Raises:
            CatalogError: If an entry is malformed.
        """
        if not isinstance(entries, list):
            raise CatalogError(f"Catalog must be a list of packages, got {type(entries).__name__}")
        packages = []
        for index, entry in enumerate(entries):
            try:
                packages.append(Package.from_dict(entry))
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                raise CatalogError(f"Invalid catalog entry #{index}: {e}") from e
        return cls(packages)

    @classmethod
    def from_manifest(cls, manifest: Dict[str, Any]) -> "PackageCatalog":
        """Create a catalog from a manifest's runtimeDependencies list."""
        return cls.from_entries(manifest.get(RUNTIME_DEPENDENCIES_KEY, []))

    @classmethod
    def from_file(cls, path: Path) -> "PackageCatalog":
        """Load a catalog from a YAML or JSON file.

        A JSON file may be a full manifest (with runtimeDependencies) or a
        bare list; a YAML file holds a ``packages`` list or a bare list.

        Raises:
            CatalogError: If the file cannot be read or parsed.
        """
        try:
            content = path.read_text(encoding="utf-8")
        except OSError as e:
            raise CatalogError(f"Cannot read catalog {path}: {e}") from e

        try:
            if path.suffix == ".json":
                data = json.loads(content)
            else:
                data = yaml.safe_load(content)
        except (json.JSONDecodeError, yaml.YAMLError) as e:
            raise CatalogError(f"Invalid catalog {path}: {e}") from e

        if isinstance(data, dict):
            if RUNTIME_DEPENDENCIES_KEY in data:
                return cls.from_manifest(data)
            data = data.get("packages", [])
        LOGGER.debug(f"Loaded catalog from {path}")
        return cls.from_entries(data or [])

    @property
    def packages(self) -> Tuple[Package, ...]:
        return self._packages

    def __len__(self) -> int:
        return len(self._packages)

    def select(self, platform_info: PlatformInfo) -> List[Package]:
        """Return the packages that apply to a platform, in catalog order.

        An empty list is valid: some platforms need no extra binaries.
        """
        selected = [p for p in self._packages if p.applies_to(platform_info)]
        LOGGER.debug(
            f"Selected {len(selected)} of {len(self._packages)} packages for {platform_info.name}"
        )
        return selected

    def support_matrix(self) -> Set[Tuple[OperatingSystem, Architecture]]:
        """Return every (OS, architecture) pair some package covers."""
        pairs: Set[Tuple[OperatingSystem, Architecture]] = set()
        all_arches = [a for a in Architecture if a != Architecture.UNKNOWN]
        for package in self._packages:
            arches = package.architectures if package.architectures is not None else all_arches
            for operating_system in package.platforms:
                for arch in arches:
                    pairs.add((operating_system, arch))
        return pairs
