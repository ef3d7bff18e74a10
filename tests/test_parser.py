"""Tests for the Tree-sitter source parser."""

from pathlib import Path

import pytest

from codeintel_cli.errors import ParseError
from codeintel_cli.parser import TreeSitterSourceParser


@pytest.fixture
def parser() -> TreeSitterSourceParser:
    return TreeSitterSourceParser()


def _write(temp_dir: Path, name: str, code: str) -> str:
    path = temp_dir / name
    path.write_text(code)
    return str(path)


def _entities(parsed):
    return {(e.type, e.id.split(":", 1)[1]) for e in parsed.entities}


def test_parse_python_structure(parser, temp_dir: Path, sample_python_code: str):
    parsed = parser.parse_sync(_write(temp_dir, "calc.py", sample_python_code))

    assert parsed.language == "python"
    assert _entities(parsed) == {
        ("function", "hello"),
        ("class", "Calculator"),
        ("method", "Calculator.add"),
        ("method", "Calculator.multiply"),
        ("function", "outer"),
        ("function", "outer.inner"),
    }
    add = next(e for e in parsed.entities if e.name == "add")
    assert add.parent_id == "class:Calculator"
    calculator = next(e for e in parsed.entities if e.name == "Calculator")
    assert calculator.start_line == 8
    assert calculator.end_line >= calculator.start_line + 8


def test_parse_python_imports(parser, temp_dir: Path):
    code = (
        "import os\n"
        "import numpy as np\n"
        "from pathlib import Path\n"
        "from .models import User, Order\n"
        "from ..core.base import Base\n"
        "from . import helpers, utils\n"
    )
    parsed = parser.parse_sync(_write(temp_dir, "mod.py", code))

    sources = [(i.source, i.specifiers, i.line) for i in parsed.imports]
    assert sources == [
        ("os", ["os"], 1),
        ("numpy", ["np"], 2),
        ("pathlib", ["Path"], 3),
        ("./models", ["User", "Order"], 4),
        ("../core/base", ["Base"], 5),
        ("./helpers", ["helpers"], 6),
        ("./utils", ["utils"], 6),
    ]


def test_parse_python_decorated_and_conditional(parser, temp_dir: Path):
    code = (
        "import functools\n"
        "\n"
        "@functools.lru_cache()\n"
        "def cached():\n"
        "    return 1\n"
        "\n"
        "if True:\n"
        "    def guarded():\n"
        "        pass\n"
    )
    parsed = parser.parse_sync(_write(temp_dir, "deco.py", code))

    assert _entities(parsed) == {("function", "cached"), ("function", "guarded")}
    cached = next(e for e in parsed.entities if e.name == "cached")
    assert cached.start_line == 3


def test_parse_typescript(parser, temp_dir: Path):
    code = (
        'import React, { useState, useEffect } from "react";\n'
        "import * as path from 'path';\n"
        'import "./styles.css";\n'
        "\n"
        "export interface Props {\n"
        "  name: string;\n"
        "}\n"
        "\n"
        "export abstract class Base {}\n"
        "\n"
        "export class Widget extends Base {\n"
        "  render(): string {\n"
        "    return 'x';\n"
        "  }\n"
        "}\n"
        "\n"
        "export const useWidget = () => useState(0);\n"
        "\n"
        "function helper() {\n"
        "  const lazy = import('./lazy');\n"
        "  return lazy;\n"
        "}\n"
        "\n"
        "export { helper };\n"
        'export * from "./reexported";\n'
        "export default Widget;\n"
    )
    parsed = parser.parse_sync(_write(temp_dir, "widget.ts", code))

    assert parsed.language == "typescript"
    assert _entities(parsed) == {
        ("interface", "Props"),
        ("class", "Base"),
        ("class", "Widget"),
        ("method", "Widget.render"),
        ("function", "useWidget"),
        ("function", "helper"),
    }

    imports = {i.source: i for i in parsed.imports}
    assert set(imports) == {"react", "path", "./styles.css", "./lazy", "./reexported"}
    assert imports["react"].specifiers == ["React", "useState", "useEffect"]
    assert imports["react"].is_default is True
    assert imports["path"].specifiers == ["path"]
    assert imports["./lazy"].line == 20

    exports = {(e.name, e.is_default) for e in parsed.exports}
    assert {("Props", False), ("Base", False), ("Widget", False), ("useWidget", False), ("helper", False)} <= exports
    assert ("default", True) in exports


def test_parse_javascript_require(parser, temp_dir: Path):
    code = (
        "const fs = require('fs');\n"
        "const { join } = require(\"path\");\n"
        "function* ids() { yield 1; }\n"
        "module.exports = { ids };\n"
    )
    parsed = parser.parse_sync(_write(temp_dir, "legacy.js", code))

    assert parsed.language == "javascript"
    assert [i.source for i in parsed.imports] == ["fs", "path"]
    assert _entities(parsed) == {("function", "ids")}


def test_parse_tsx(parser, temp_dir: Path):
    code = "export function App() {\n  return <div>hi</div>;\n}\n"
    parsed = parser.parse_sync(_write(temp_dir, "App.tsx", code))

    assert _entities(parsed) == {("function", "App")}


@pytest.mark.asyncio
async def test_unsupported_extension_returns_none(parser, temp_dir: Path):
    assert await parser.parse(_write(temp_dir, "main.go", "package main\n")) is None
    assert parser.supports("x.rs") is False
    assert parser.supports("x.tsx") is True


@pytest.mark.asyncio
async def test_parse_async_matches_sync(parser, temp_dir: Path, sample_python_code: str):
    path = _write(temp_dir, "calc.py", sample_python_code)
    parsed = await parser.parse(path)

    assert parsed == parser.parse_sync(path)


def test_missing_file_raises(parser, temp_dir: Path):
    with pytest.raises(ParseError):
        parser.parse_sync(str(temp_dir / "missing.py"))


def test_syntax_errors_are_tolerated(parser, temp_dir: Path):
    parsed = parser.parse_sync(_write(temp_dir, "broken.py", "def ok():\n    pass\n\nvalue = (1,\n"))
    assert ("function", "ok") in _entities(parsed)
