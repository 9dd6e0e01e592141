"""
Kernel Boundary & Invariants Contract.

Tests that enforce the kernel's architectural boundaries:

1. materials_kernel/** may NOT import materials_services or
   materials_config. The kernel never depends upward.

2. materials_kernel/domain/** is pure: no ORM or database imports.

3. The kernel invariants declaration is complete and non-empty.

These tests read source code via AST -- they cannot break anything.
"""

import ast
from pathlib import Path

from materials_kernel.invariants import (
    ALL_KERNEL_INVARIANTS,
    FORBIDDEN_KERNEL_IMPORTS,
    KernelInvariant,
)

ROOT = Path(__file__).resolve().parents[2]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _python_files(package: str) -> list[Path]:
    return sorted((ROOT / package).rglob("*.py"))


def _extract_imports(filepath: Path) -> list[tuple[int, str]]:
    """Extract (line_number, module_string) for all imports in a file."""
    tree = ast.parse(filepath.read_text(), filename=str(filepath))

    results: list[tuple[int, str]] = []
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            for alias in node.names:
                results.append((node.lineno, alias.name))
        elif isinstance(node, ast.ImportFrom):
            if node.module:
                results.append((node.lineno, node.module))
    return results


def _violations(package: str, forbidden: tuple[str, ...]) -> list[str]:
    found: list[str] = []
    for filepath in _python_files(package):
        for lineno, module in _extract_imports(filepath):
            for prefix in forbidden:
                if module == prefix or module.startswith(f"{prefix}."):
                    found.append(f"  {filepath.relative_to(ROOT)}:{lineno} imports '{module}'")
    return found


# ---------------------------------------------------------------------------
# Test: Kernel has no upward dependencies
# ---------------------------------------------------------------------------

class TestKernelNoUpwardDependencies:

    def test_kernel_does_not_import_forbidden_packages(self):
        violations = _violations("materials_kernel", FORBIDDEN_KERNEL_IMPORTS)
        assert not violations, (
            "Kernel boundary violation -- materials_kernel/** must not import "
            "upward packages:\n" + "\n".join(violations)
        )

    def test_config_does_not_import_services(self):
        violations = _violations("materials_config", ("materials_services",))
        assert not violations, "\n".join(violations)

    def test_kernel_files_were_scanned(self):
        assert len(_python_files("materials_kernel")) > 10


# ---------------------------------------------------------------------------
# Test: Domain purity
# ---------------------------------------------------------------------------

class TestKernelDomainPurity:
    """materials_kernel/domain/** must not import ORM or DB packages."""

    FORBIDDEN_MODULES = (
        "sqlalchemy",
        "psycopg2",
        "sqlite3",
        "materials_kernel.db",
        "materials_kernel.models",
        "materials_kernel.services",
    )

    def test_domain_no_orm_imports(self):
        violations = _violations("materials_kernel/domain", self.FORBIDDEN_MODULES)
        assert not violations, (
            "Domain purity violation -- materials_kernel/domain/** must not "
            "import ORM or database code:\n" + "\n".join(violations)
        )


# ---------------------------------------------------------------------------
# Test: Invariant declaration
# ---------------------------------------------------------------------------

class TestInvariantDeclaration:

    def test_invariants_declared(self):
        assert ALL_KERNEL_INVARIANTS == frozenset(KernelInvariant)
        assert KernelInvariant.LEDGER_REPRODUCIBILITY in ALL_KERNEL_INVARIANTS
        assert KernelInvariant.ALL_OR_NOTHING_DISPATCH in ALL_KERNEL_INVARIANTS

    def test_forbidden_imports_name_real_packages(self):
        for package in FORBIDDEN_KERNEL_IMPORTS:
            assert (ROOT / package / "__init__.py").exists()
