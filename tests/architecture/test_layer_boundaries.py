"""
Import-direction enforcement across the three packages.

    payroll_kernel    may not import payroll_engines or payroll_services
    payroll_engines   may not import payroll_services, SQLAlchemy, or the
                      kernel's db/models/services layers
    kernel domain     may not import SQLAlchemy or the kernel's db/models/
                      services layers

All scanning is done via AST; these tests are read-only.
"""

import ast
import glob
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[2]


def _python_files(package: str) -> list[str]:
    """Return all .py files under *package*, sorted for deterministic order."""
    return sorted(glob.glob(str(ROOT / package / "**" / "*.py"), recursive=True))


def _extract_imports(filepath: str) -> list[tuple[int, str]]:
    """Return (line_number, module_string) for every import in *filepath*."""
    tree = ast.parse(Path(filepath).read_text(encoding="utf-8"), filename=filepath)
    results: list[tuple[int, str]] = []
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            for alias in node.names:
                results.append((node.lineno, alias.name))
        elif isinstance(node, ast.ImportFrom):
            if node.module:
                results.append((node.lineno, node.module))
    return results


def _matches_any(module: str, prefixes: tuple[str, ...]) -> bool:
    return any(module == p or module.startswith(f"{p}.") for p in prefixes)


def _violations(package: str, forbidden: tuple[str, ...]) -> list[str]:
    found = []
    for filepath in _python_files(package):
        for lineno, module in _extract_imports(filepath):
            if _matches_any(module, forbidden):
                found.append(f"{Path(filepath).relative_to(ROOT)}:{lineno} imports {module}")
    return found


PERSISTENCE = (
    "sqlalchemy",
    "payroll_kernel.db",
    "payroll_kernel.models",
    "payroll_kernel.services",
)


class TestLayerBoundaries:
    """Dependencies point inward only."""

    def test_packages_found(self):
        """Guard against the scan silently matching nothing."""
        for package in ("payroll_kernel", "payroll_engines", "payroll_services"):
            assert _python_files(package), package

    def test_kernel_does_not_import_outer_layers(self):
        assert _violations("payroll_kernel", ("payroll_engines", "payroll_services")) == []

    def test_engines_are_pure(self):
        forbidden = ("payroll_services",) + PERSISTENCE
        assert _violations("payroll_engines", forbidden) == []

    def test_domain_is_pure(self):
        assert _violations("payroll_kernel/domain", PERSISTENCE) == []

    @pytest.mark.parametrize("package", ["payroll_engines", "payroll_kernel/domain"])
    def test_no_wall_clock_reads(self, package):
        """Time comes from an injected Clock; SystemClock is the one exception."""
        offenders = []
        for filepath in _python_files(package):
            if filepath.endswith("clock.py"):
                continue
            tree = ast.parse(Path(filepath).read_text(encoding="utf-8"))
            for node in ast.walk(tree):
                if (
                    isinstance(node, ast.Call)
                    and isinstance(node.func, ast.Attribute)
                    and node.func.attr in ("now", "today", "utcnow")
                    and isinstance(node.func.value, ast.Name)
                    and node.func.value.id in ("datetime", "date")
                ):
                    offenders.append(f"{filepath}:{node.lineno}")
        assert offenders == []
