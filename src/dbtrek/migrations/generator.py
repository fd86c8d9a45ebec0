"""Migration skeleton generation."""

from datetime import datetime, timezone
from pathlib import Path

from ..utils.logging import LogContext, get_logger
from .errors import SkeletonExistsError
from .unit import validate_name

logger = get_logger(__name__, LogContext.GENERATOR)

TIMESTAMP_FORMAT = "%Y%m%d%H%M%S"

MIGRATION_TEMPLATE = '''"""Migration {name}."""

from dbtrek import MigrationUnit

migration = MigrationUnit(
    name="{name}",
    forward_script="""
""",
    reverse_script="""
""",
)
'''


def migration_file_name(name: str, now: datetime | None = None) -> str:
    """File name for a new migration, prefixed with its UTC creation time."""
    now = now or datetime.now(timezone.utc)
    return f"{now.strftime(TIMESTAMP_FORMAT)}_{name}.py"


def render_migration(name: str) -> str:
    return MIGRATION_TEMPLATE.format(name=name)


def find_migration_file(name: str, migrations_dir: Path) -> Path | None:
    """Return the existing file that holds migration ``name``, if any."""
    if not migrations_dir.is_dir():
        return None
    for candidate in sorted(migrations_dir.glob(f"*_{name}.py")):
        stamp, _, rest = candidate.stem.partition("_")
        if stamp.isdigit() and rest == name:
            return candidate
    return None


def create_migration(
    name: str, migrations_dir: Path | str, now: datetime | None = None
) -> Path:
    """Write an empty migration file.

    Args:
        name: snake_case migration name.
        migrations_dir: Directory to write into; created when missing.
        now: Creation time used for the file name prefix.

    Returns:
        Path of the new file.

    Raises:
        InvalidNameError: If the name is not snake_case. Nothing is touched.
        SkeletonExistsError: If a migration with that name already exists.
    """
    validate_name(name)
    migrations_dir = Path(migrations_dir)

    existing = find_migration_file(name, migrations_dir)
    if existing is not None:
        raise SkeletonExistsError(name, existing)

    migrations_dir.mkdir(parents=True, exist_ok=True)
    path = migrations_dir / migration_file_name(name, now)
    try:
        with open(path, "x", encoding="utf-8") as f:
            f.write(render_migration(name))
    except FileExistsError as e:
        raise SkeletonExistsError(name, path) from e

    logger.info("Created migration", name=name, path=str(path))
    return path
