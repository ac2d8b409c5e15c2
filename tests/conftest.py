"""Shared pytest fixtures for Permute tests."""

from __future__ import annotations

import textwrap
from collections.abc import Callable
from pathlib import Path

import pytest

from permute.core.document_loader import parse_document, read_yaml
from permute.core.ir.document import DocumentIR
from permute.core.store import Store, load

FIXTURES = Path(__file__).parent / "fixtures"


def document(namespace: str, source: str) -> DocumentIR:
    """Parse an inline YAML document."""
    return parse_document(read_yaml(textwrap.dedent(source), namespace), namespace)


def store_of(*docs: tuple[str, str], host_modules: tuple[str, ...] = ()) -> Store:
    """Build a store from ``(namespace, yaml)`` pairs."""
    return load([document(ns, src) for ns, src in docs], host_modules=host_modules)


@pytest.fixture
def fixtures_dir() -> Path:
    """Return path to fixtures directory."""
    return FIXTURES


@pytest.fixture
def sample_dir(fixtures_dir: Path) -> Path:
    """Return path to the sample project."""
    return fixtures_dir / "projects" / "sample"


@pytest.fixture
def make_store() -> Callable[..., Store]:
    """Factory building a store from inline ``(namespace, yaml)`` documents."""
    return store_of


@pytest.fixture(scope="session")
def prelude_store() -> Store:
    """Store holding only the built-in prelude."""
    return load([])


@pytest.fixture
def make_document() -> Callable[[str, str], DocumentIR]:
    """Factory parsing an inline YAML document."""
    return document
