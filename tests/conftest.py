"""Pytest configuration and fixtures for CodeIntel CLI tests."""

import shutil
import tempfile
from pathlib import Path
from typing import Dict, Generator, List, Optional

import pytest

from codeintel_cli.errors import EnrichmentError
from codeintel_cli.knowledge import KnowledgeSource
from codeintel_cli.models import ParsedFile, SearchResult
from codeintel_cli.parser import SourceParser


class StubKnowledgeSource(KnowledgeSource):
    """Canned search results keyed by a substring of the query.

    Every query is recorded; ``fail=True`` makes each search raise.
    """

    def __init__(self, responses: Optional[Dict[str, List[SearchResult]]] = None, fail: bool = False):
        self.responses = responses or {}
        self.fail = fail
        self.queries: List[str] = []

    async def search(self, query: str, limit: int = 10, domain: Optional[str] = None) -> List[SearchResult]:
        self.queries.append(query)
        if self.fail:
            raise EnrichmentError("knowledge source unavailable")
        for needle, results in self.responses.items():
            if needle in query:
                return results[:limit]
        return []


class StubParser(SourceParser):
    """Returns prepared ParsedFile objects keyed by file name."""

    def __init__(self, files: Dict[str, ParsedFile], broken: tuple = ()):
        self.files = files
        self.broken = broken

    async def parse(self, path: str) -> Optional[ParsedFile]:
        name = Path(path).name
        if name in self.broken:
            raise RuntimeError(f"cannot parse {name}")
        return self.files.get(name)


@pytest.fixture(autouse=True)
def _isolated_config(tmp_path, monkeypatch):
    """Keep config reads and writes away from the real home directory."""
    config_file = tmp_path / "codeintel-home" / "config.toml"
    monkeypatch.setattr("codeintel_cli.config_manager.CONFIG_FILE", config_file)
    monkeypatch.setattr("codeintel_cli.config_manager.BASE_DIR", config_file.parent)
    monkeypatch.setattr("codeintel_cli.knowledge.KNOWLEDGE_ENDPOINT", "")
    return config_file


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    tmp = Path(tempfile.mkdtemp())
    yield tmp
    shutil.rmtree(tmp, ignore_errors=True)


@pytest.fixture
def sample_repo_path() -> Path:
    """Path to the read-only sample repository."""
    return Path(__file__).parent / "fixtures" / "sample_repo"


@pytest.fixture
def sample_repo(temp_dir: Path, sample_repo_path: Path) -> Path:
    """A writable copy of the sample repository."""
    target = temp_dir / "repo"
    shutil.copytree(sample_repo_path, target)
    return target


@pytest.fixture
def stub_knowledge() -> StubKnowledgeSource:
    return StubKnowledgeSource()


def write_files(root: Path, files: Dict[str, str]) -> Path:
    """Create *files* (relative path -> content) under *root*."""
    for rel_path, content in files.items():
        path = root / rel_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    return root


@pytest.fixture
def sample_python_code() -> str:
    """Sample Python code for testing the parser."""
    return '''"""Sample module for testing."""

import os

def hello(name: str) -> str:
    return f"Hello, {name}!"

class Calculator:
    """Simple calculator."""

    def add(self, a: int, b: int) -> int:
        return a + b

    def multiply(self, a: int, b: int) -> int:
        result = self.add(a, 0)
        return result

def outer():
    def inner():
        return os.sep
    return inner()
'''
