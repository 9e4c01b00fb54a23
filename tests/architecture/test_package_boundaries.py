"""
Package boundary contract.

1. stipend_kernel/** may NOT import stipend_ingestion.  The kernel never
   depends upward.
2. stipend_kernel/domain/** is pure: no SQLAlchemy, no engine, ORM models,
   services or selectors.  The money helpers in db.types are allowed.
3. stipend_ingestion/adapters/** do file I/O only: no kernel or database
   imports.

These tests read source code via AST; nothing is imported or executed.
"""

import ast
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]


def _python_files(package: str) -> list[Path]:
    return sorted((ROOT / package).rglob("*.py"))


def _imports(path: Path) -> list[tuple[int, str]]:
    tree = ast.parse(path.read_text(), filename=str(path))
    found = []
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            found.extend((node.lineno, alias.name) for alias in node.names)
        elif isinstance(node, ast.ImportFrom) and node.module:
            found.append((node.lineno, node.module))
    return found


def _violations(package: str, forbidden: tuple[str, ...]) -> list[str]:
    out = []
    for path in _python_files(package):
        for lineno, module in _imports(path):
            if any(module == p or module.startswith(f"{p}.") for p in forbidden):
                out.append(f"  {path.relative_to(ROOT)}:{lineno} imports '{module}'")
    return out


class TestKernelDoesNotDependUpward:

    def test_no_ingestion_imports(self):
        violations = _violations("stipend_kernel", ("stipend_ingestion",))
        assert not violations, "stipend_kernel imports ingestion:\n" + "\n".join(violations)


class TestDomainIsPure:

    FORBIDDEN = (
        "sqlalchemy",
        "stipend_kernel.db.base",
        "stipend_kernel.db.engine",
        "stipend_kernel.db.immutability",
        "stipend_kernel.models",
        "stipend_kernel.services",
        "stipend_kernel.selectors",
    )

    def test_domain_has_no_persistence_imports(self):
        violations = _violations("stipend_kernel/domain", self.FORBIDDEN)
        assert not violations, "impure domain module:\n" + "\n".join(violations)


class TestAdaptersAreIOOnly:

    def test_adapters_have_no_kernel_imports(self):
        violations = _violations(
            "stipend_ingestion/adapters", ("stipend_kernel", "sqlalchemy")
        )
        assert not violations, "adapter reaches into the kernel:\n" + "\n".join(violations)
