"""Persistence layer for procflow definitions, instances and steps."""

from __future__ import annotations

import os
from typing import Optional

from ..config import ProcflowConfig, load_config
from .inmemory import (
    InMemoryDefinitionRepository,
    InMemoryInstanceRepository,
    InMemoryStepInstanceRepository,
    create_inmemory_repositories,
)
from .models import StepInstance, WorkflowInstance
from .repository import (
    DefinitionRepository,
    InstanceRepository,
    RepositorySet,
    StepInstanceRepository,
)
from .sqlite import create_sqlite_repositories

try:  # pragma: no cover - optional dependency
    from .postgres import create_postgres_repositories
except ImportError:  # pragma: no cover - optional dependency
    create_postgres_repositories = None  # type: ignore

_repositories_instance: RepositorySet | None = None


def get_repositories(
    database_url: Optional[str] = None, config: Optional[ProcflowConfig] = None
) -> RepositorySet:
    """Return the definition, instance and step repositories as one set.

    The storage is picked from the first URL found among ``database_url``,
    ``PROCFLOW_DATABASE_URL``, ``DATABASE_URL`` and ``config.database_url``:
    ``sqlite://<path>`` or ``postgres(ql)://...``. Without a URL the engine
    runs on in-memory repositories. Calls without arguments reuse the last
    set built.
    """

    global _repositories_instance
    if _repositories_instance is not None and database_url is None and config is None:
        return _repositories_instance

    config = config or load_config()
    database_url = (
        database_url
        or os.getenv("PROCFLOW_DATABASE_URL")
        or os.getenv("DATABASE_URL")
        or getattr(config, "database_url", None)
    )

    if not database_url:
        _repositories_instance = create_inmemory_repositories()
        return _repositories_instance

    if database_url.startswith("sqlite://"):
        path = database_url.replace("sqlite://", "", 1)
        _repositories_instance = create_sqlite_repositories(path)
    elif database_url.startswith("postgres://") or database_url.startswith(
        "postgresql://"
    ):
        if create_postgres_repositories is None:
            raise RuntimeError("Postgres support not available; install procflow[postgres]")
        _repositories_instance = create_postgres_repositories(database_url)
    else:
        raise ValueError(f"Unsupported database backend: {database_url}")

    return _repositories_instance


__all__ = [
    "DefinitionRepository",
    "InstanceRepository",
    "StepInstanceRepository",
    "RepositorySet",
    "StepInstance",
    "WorkflowInstance",
    "InMemoryDefinitionRepository",
    "InMemoryInstanceRepository",
    "InMemoryStepInstanceRepository",
    "create_inmemory_repositories",
    "create_sqlite_repositories",
    "create_postgres_repositories",
    "get_repositories",
]
