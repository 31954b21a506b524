"""Architectural tests for the quote persistence layer.

These tests enforce layering rules with file-system and text/AST inspection
only, without importing application code:
- the logic layer never reads the environment or configuration files;
- the logic layer holds no module-level mutable state;
- engines are created only in ``quote_store/db``;
- exception classes live in ``quote_store/errors.py``;
- every package module logs through a module-level named logger.
"""

from __future__ import annotations

import ast
from pathlib import Path
from typing import Iterable, List, Tuple


ROOT = Path(__file__).resolve().parents[2]
PACKAGE = ROOT / "quote_store"
LOGIC = PACKAGE / "logic"


def _read_text(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except Exception as exc:  # pragma: no cover - defensive path
        raise AssertionError(f"Failed to read text file: {path}: {exc}")


def _parse(path: Path) -> ast.Module:
    return ast.parse(_read_text(path), filename=str(path))


def _modules(base: Path) -> List[Path]:
    return sorted(p for p in base.rglob("*.py") if "__pycache__" not in p.parts)


def _imported_names(tree: ast.Module) -> Iterable[str]:
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            for alias in node.names:
                yield alias.name
        elif isinstance(node, ast.ImportFrom) and node.module:
            yield node.module
            for alias in node.names:
                yield f"{node.module}.{alias.name}"


def test_logic_modules_exist() -> None:
    names = {p.stem for p in _modules(LOGIC)}
    expected = {
        "service_registry",
        "collection_router",
        "identifiers",
        "fanout",
        "gateway",
        "filters",
        "patches",
        "repository_quotes",
    }
    assert expected <= names, sorted(expected - names)


def test_logic_layer_does_not_read_environment_or_config() -> None:
    offenders: List[Tuple[str, str]] = []
    for path in _modules(LOGIC):
        text = _read_text(path)
        for needle in ("os.environ", "os.getenv", "load_config", "quote_store.config", "open("):
            if needle in text:
                offenders.append((path.name, needle))
        if "os" in set(_imported_names(_parse(path))):
            offenders.append((path.name, "import os"))
    assert not offenders, offenders


def test_logic_layer_has_no_module_level_mutable_state() -> None:
    offenders: List[str] = []
    for path in _modules(LOGIC):
        for node in _parse(path).body:
            if isinstance(node, ast.Global):
                offenders.append(f"{path.name}: global")
            if not isinstance(node, (ast.Assign, ast.AnnAssign)):
                continue
            targets = node.targets if isinstance(node, ast.Assign) else [node.target]
            names = [t.id for t in targets if isinstance(t, ast.Name)]
            if names == ["__all__"]:
                continue
            value = node.value
            mutable = isinstance(value, (ast.Dict, ast.List, ast.Set, ast.DictComp, ast.ListComp, ast.SetComp))
            if isinstance(value, ast.Call) and isinstance(value.func, ast.Name):
                mutable = mutable or value.func.id in {"dict", "list", "set", "defaultdict", "OrderedDict"}
            if mutable:
                offenders.append(f"{path.name}: {', '.join(names)}")
        if "global " in _read_text(path):
            offenders.append(f"{path.name}: global statement")
    assert not offenders, offenders


def test_engines_are_created_only_in_db_layer() -> None:
    offenders = []
    for path in _modules(PACKAGE):
        if path.parent.name == "db":
            continue
        if "create_engine" in _read_text(path):
            offenders.append(str(path.relative_to(ROOT)))
    assert not offenders, offenders


def test_exception_classes_live_in_errors_module() -> None:
    errors_path = PACKAGE / "errors.py"
    defined = {
        node.name
        for node in ast.walk(_parse(errors_path))
        if isinstance(node, ast.ClassDef)
    }
    assert {
        "QuoteStoreError",
        "StorageError",
        "DuplicateKeyError",
        "IdentifierAllocationError",
        "ServiceFilterError",
    } <= defined

    offenders = []
    for path in _modules(PACKAGE):
        if path == errors_path:
            continue
        for node in ast.walk(_parse(path)):
            if not isinstance(node, ast.ClassDef):
                continue
            bases = [b.id for b in node.bases if isinstance(b, ast.Name)]
            if any(b.endswith("Error") or b.endswith("Exception") for b in bases):
                offenders.append(f"{path.name}:{node.name}")
    assert not offenders, offenders


def test_package_modules_use_named_module_loggers() -> None:
    offenders = []
    for path in _modules(PACKAGE):
        text = _read_text(path)
        if "import logging" not in text or path.name == "logging_setup.py":
            continue
        if "logger = logging.getLogger(__name__)" not in text:
            offenders.append(path.name)
        if "print(" in text:
            offenders.append(f"{path.name}: print")
    assert not offenders, offenders


def test_gateway_depends_on_collaborators_not_sql() -> None:
    tree = _parse(LOGIC / "gateway.py")
    imported = set(_imported_names(tree))
    assert not any(name.startswith("sqlalchemy") for name in imported), sorted(imported)
    assert "quote_store.logic.fanout" in imported
    assert "quote_store.logic.identifiers" in imported
