"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

import os
from pathlib import Path

import pytest


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip expensive tests during mutation runs."""
    if not os.environ.get("MUTANT_UNDER_TEST"):
        return
    skip_marker = pytest.mark.skip(reason="Skipped during mutation run to avoid timeouts.")
    for item in items:
        if "mutation_timeout" in item.keywords:
            item.add_marker(skip_marker)


@pytest.fixture
def cli_env(tmp_path: Path) -> dict[str, str]:
    """Environment isolating the CLI from the user's config and log directories."""
    return {
        "PGLITECTL_CONFIG_FILE": str(tmp_path / "config.yml"),
        "PGLITECTL_LOGS_DIR": str(tmp_path / "logs"),
    }
