"""Migration error taxonomy."""

from typing import Any

from ..utils.logging import DbTrekError


class MigrationError(DbTrekError):
    """Base class for registry, ledger and runner errors."""

    pass


class InvalidNameError(MigrationError):
    """A migration name is not a lowercase snake_case identifier."""

    def __init__(self, name: str, reason: str | None = None):
        message = f"Invalid migration name {name!r}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message, context={"name": name})
        self.name = name


class DuplicateNameError(MigrationError):
    """Two units in one registry share a name."""

    def __init__(self, name: str):
        super().__init__(
            f"Duplicate migration name {name!r} in registry", context={"name": name}
        )
        self.name = name


class InvalidScriptError(MigrationError):
    """A migration script or migration module cannot be loaded."""

    pass


class LedgerInconsistencyError(MigrationError):
    """The ledger does not describe a prefix of the registry order."""

    pass


class InsufficientHistoryError(MigrationError):
    """A rollback asked for more units than are applied."""

    def __init__(self, requested: int, applied: int):
        super().__init__(
            f"Cannot roll back {requested} migration(s): "
            f"only {applied} applied",
            context={"requested": requested, "applied": applied},
        )
        self.requested = requested
        self.applied = applied


class ExecutionError(MigrationError):
    """A forward or reverse script failed.

    ``completed`` lists the units committed earlier in the same call; they
    stay applied (or reverted).
    """

    def __init__(
        self,
        unit: str,
        direction: str,
        cause: BaseException,
        completed: list[str] | None = None,
    ):
        super().__init__(
            f"{direction.capitalize()} script of migration {unit!r} failed: {cause}",
            context={
                "unit": unit,
                "direction": direction,
                "completed": list(completed or []),
            },
        )
        self.unit = unit
        self.direction = direction
        self.cause = cause
        self.completed = list(completed or [])


class SkeletonExistsError(MigrationError):
    """A migration file with the requested name already exists."""

    def __init__(self, name: str, path: Any):
        super().__init__(
            f"Migration {name!r} already exists at {path}",
            context={"name": name, "path": str(path)},
        )
        self.name = name
        self.path = path


class MigrationLockError(MigrationError):
    """The migration lock is held by another process."""

    pass
