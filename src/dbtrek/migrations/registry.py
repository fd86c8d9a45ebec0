"""Ordered, immutable collection of known migrations."""

import importlib
import importlib.util
import re
from collections.abc import Iterable, Iterator
from pathlib import Path
from typing import Any

from ..utils.logging import LogContext, get_logger
from .errors import DuplicateNameError, InvalidScriptError
from .unit import MigrationUnit, validate_name

logger = get_logger(__name__, LogContext.REGISTRY)

# <YYYYMMDDHHMMSS>_<name>.py, as written by the generator
MIGRATION_FILE_PATTERN = re.compile(r"^(?P<stamp>\d{14})_(?P<name>[a-z0-9_]+)\.py$")


class MigrationRegistry:
    """The full ordered history of migration units.

    Order is registration order and is never re-sorted. It defines the only
    valid forward order, and its reverse is the rollback order. A registry is
    built once by the integrating program and passed to the runner; new
    units are added with ``extend``, which returns a new registry.
    """

    def __init__(self, units: Iterable[MigrationUnit] = ()) -> None:
        """Build a registry.

        Args:
            units: Migration units in application order.

        Raises:
            InvalidNameError: If a unit name is not snake_case.
            DuplicateNameError: If two units share a name.
        """
        ordered: list[MigrationUnit] = []
        positions: dict[str, int] = {}

        for unit in units:
            if not isinstance(unit, MigrationUnit):
                raise TypeError(
                    f"Registry entries must be MigrationUnit, got {type(unit).__name__}"
                )
            validate_name(unit.name)
            if unit.name in positions:
                raise DuplicateNameError(unit.name)
            positions[unit.name] = len(ordered)
            ordered.append(unit)

        self._units = tuple(ordered)
        self._positions = positions

    @property
    def units(self) -> tuple[MigrationUnit, ...]:
        return self._units

    @property
    def names(self) -> list[str]:
        return [unit.name for unit in self._units]

    def get(self, name: str) -> MigrationUnit | None:
        """Look up a unit by name, or None when unknown."""
        position = self._positions.get(name)
        return None if position is None else self._units[position]

    def index_of(self, name: str) -> int:
        """Position of a unit in application order.

        Raises:
            KeyError: If the name is not registered.
        """
        return self._positions[name]

    def extend(self, units: Iterable[MigrationUnit]) -> "MigrationRegistry":
        """Return a new registry with units appended after the current history."""
        return MigrationRegistry([*self._units, *units])

    @classmethod
    def from_directory(cls, migrations_dir: Path | str) -> "MigrationRegistry":
        """Load the migration files written by ``create_migration``.

        Files are ordered by name; the timestamp prefix records the order in
        which they were authored.

        Args:
            migrations_dir: Directory holding ``<timestamp>_<name>.py`` files.

        Returns:
            Registry of the loaded units. Empty if the directory is missing.
        """
        migrations_dir = Path(migrations_dir)
        if not migrations_dir.is_dir():
            logger.warning(
                "Migrations directory does not exist",
                migrations_dir=str(migrations_dir),
            )
            return cls()

        units = []
        for migration_file in sorted(migrations_dir.glob("*.py")):
            match = MIGRATION_FILE_PATTERN.match(migration_file.name)
            if match is None:
                if not migration_file.name.startswith("__"):
                    logger.debug(
                        "Skipping file that is not a migration",
                        file=migration_file.name,
                    )
                continue

            unit = _load_unit_from_file(migration_file)
            if unit.name != match.group("name"):
                raise InvalidScriptError(
                    f"Migration file {migration_file.name} defines unit "
                    f"{unit.name!r}, expected {match.group('name')!r}",
                    context={"file": str(migration_file)},
                )
            units.append(unit)

        logger.debug(
            "Loaded migrations from directory",
            migrations_dir=str(migrations_dir),
            count=len(units),
        )
        return cls(units)

    def __len__(self) -> int:
        return len(self._units)

    def __iter__(self) -> Iterator[MigrationUnit]:
        return iter(self._units)

    def __contains__(self, name: object) -> bool:
        return name in self._positions

    def __getitem__(self, name: str) -> MigrationUnit:
        return self._units[self._positions[name]]

    def __repr__(self) -> str:
        return f"<MigrationRegistry(units={self.names!r})>"


def _load_unit_from_file(migration_file: Path) -> MigrationUnit:
    """Import a migration file and return its module-level ``migration``."""
    module_name = f"dbtrek_migration_{migration_file.stem}"
    spec = importlib.util.spec_from_file_location(module_name, migration_file)
    if spec is None or spec.loader is None:
        raise InvalidScriptError(
            f"Cannot load migration file {migration_file}",
            context={"file": str(migration_file)},
        )

    module = importlib.util.module_from_spec(spec)
    try:
        spec.loader.exec_module(module)
    except Exception as e:
        raise InvalidScriptError(
            f"Failed to import migration file {migration_file}: {e}",
            context={"file": str(migration_file)},
        ) from e

    unit = getattr(module, "migration", None)
    if not isinstance(unit, MigrationUnit):
        raise InvalidScriptError(
            f"Migration file {migration_file} has no module-level "
            "'migration = MigrationUnit(...)'",
            context={"file": str(migration_file)},
        )
    return unit


def load_registry(reference: str) -> MigrationRegistry:
    """Import a registry from a ``"package.module:attribute"`` reference.

    The attribute may be a MigrationRegistry, a sequence of units, or a
    zero-argument callable returning either.
    """
    module_path, _, attribute = reference.partition(":")
    if not module_path or not attribute:
        raise InvalidScriptError(
            f"Registry reference {reference!r} must look like 'package.module:name'"
        )

    try:
        module = importlib.import_module(module_path)
    except ImportError as e:
        raise InvalidScriptError(
            f"Cannot import registry module {module_path!r}: {e}"
        ) from e

    try:
        target: Any = getattr(module, attribute)
    except AttributeError as e:
        raise InvalidScriptError(
            f"Module {module_path!r} has no attribute {attribute!r}"
        ) from e

    if callable(target) and not isinstance(target, MigrationRegistry):
        target = target()

    if isinstance(target, MigrationRegistry):
        return target
    return MigrationRegistry(target)
