"""Import smoke tests for solokit modules."""

from __future__ import annotations

import pytest

from tests.smoke.import_helpers import import_module_or_skip

MODULES = [
    "solokit",
    "solokit.cli_entry",
    "solokit.constants",
    "solokit.errors",
    "solokit.logging_utils",
    "solokit.optional_imports",
    "solokit.parallel_utils",
    "solokit.readwrite",
]


@pytest.mark.parametrize("module_name", MODULES)
@pytest.mark.smoke
def test_imports(module_name: str) -> None:
    import_module_or_skip(module_name)
