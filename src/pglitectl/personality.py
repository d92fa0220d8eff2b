"""Database engine personalities.

A personality names the administrative binaries and the config filename for
one PostgreSQL-family engine. It is picked once per invocation and persisted
into the instance directory during initialisation so later commands that omit
``--personality`` keep targeting the same engine.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from .config import ConfigError

if TYPE_CHECKING:
    from .instance import InstancePaths

DEFAULT_PERSONALITY = "postgres"


class PersonalityError(ConfigError):
    """Raised when a personality name is not recognised."""


@dataclass(frozen=True)
class Personality:
    """Command names and config filename for one engine flavour."""

    name: str
    control_command: str
    shell_command: str
    init_command: str
    config_filename: str


PERSONALITIES: dict[str, Personality] = {
    "postgres": Personality(
        name="postgres",
        control_command="pg_ctl",
        shell_command="psql",
        init_command="initdb",
        config_filename="postgresql.conf",
    ),
    "pipeline": Personality(
        name="pipeline",
        control_command="pipeline-ctl",
        shell_command="pipeline",
        init_command="pipeline-init",
        config_filename="pipelinedb.conf",
    ),
}


def resolve(name: str) -> Personality:
    """Return the personality registered under exactly *name*."""
    try:
        return PERSONALITIES[name]
    except KeyError:
        choices = ", ".join(sorted(PERSONALITIES))
        raise PersonalityError(
            f"Unknown personality '{name}'. Valid choices: {choices}."
        ) from None


def load_persisted(paths: InstancePaths) -> Personality | None:
    """Return the personality recorded in the instance directory, if any."""
    marker = paths.personality_file
    if not marker.is_file():
        return None
    return resolve(marker.read_text(encoding="utf-8").strip())


def persist(paths: InstancePaths, personality: Personality) -> None:
    """Record *personality* in the instance directory."""
    paths.personality_file.write_text(f"{personality.name}\n", encoding="utf-8")


def select(
    flag: str | None,
    paths: InstancePaths,
    default: str = DEFAULT_PERSONALITY,
) -> Personality:
    """Pick the personality for this invocation.

    An explicit *flag* is always validated, but a marker left by a previous
    ``setup`` takes precedence so control commands hit the right engine.
    """
    requested = resolve(flag) if flag is not None else None
    persisted = load_persisted(paths)
    if persisted is not None:
        return persisted
    if requested is not None:
        return requested
    return resolve(default)


__all__ = [
    "DEFAULT_PERSONALITY",
    "PERSONALITIES",
    "Personality",
    "PersonalityError",
    "load_persisted",
    "persist",
    "resolve",
    "select",
]
