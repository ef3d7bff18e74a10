"""Source parsing built on Tree-sitter.

Turns one file into a :class:`ParsedFile`: named entities (classes,
functions, methods, interfaces), import statements and exports. Only
structure is extracted here; call and inheritance relationships are left to
the knowledge source.

Grammars come from the per-language ``tree-sitter-*`` packages, loaded once
per parser instance.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import tree_sitter_javascript
import tree_sitter_python
import tree_sitter_typescript
from tree_sitter import Language, Parser

from .config import LANGUAGE_MAP
from .errors import ParseError
from .models import ParsedEntity, ParsedExport, ParsedFile, ParsedImport

logger = logging.getLogger(__name__)

# Grammar loaders keyed by file extension
_GRAMMARS: Dict[str, Callable[[], Any]] = {
    ".py": tree_sitter_python.language,
    ".js": tree_sitter_javascript.language,
    ".jsx": tree_sitter_javascript.language,
    ".ts": tree_sitter_typescript.language_typescript,
    ".tsx": tree_sitter_typescript.language_tsx,
}

_SCRIPT_CLASS_TYPES = {"class_declaration", "abstract_class_declaration"}
_SCRIPT_FUNCTION_TYPES = {"function_declaration", "generator_function_declaration"}
_SCRIPT_FUNCTION_VALUES = {"arrow_function", "function_expression", "function", "generator_function"}


def _text(node: Any) -> str:
    return node.text.decode("utf-8", errors="ignore") if node is not None else ""


def _line(node: Any) -> int:
    return node.start_point[0] + 1


def _end_line(node: Any) -> int:
    return node.end_point[0] + 1


def _unquote(literal: str) -> str:
    return literal.strip().strip("'\"`")


# ===================================================================
# Abstract interface
# ===================================================================

class SourceParser(ABC):
    """Turns a source file into a :class:`ParsedFile`."""

    @abstractmethod
    async def parse(self, path: str) -> Optional[ParsedFile]:
        """Parse *path*.

        Returns ``None`` for unsupported file types and raises
        :class:`ParseError` when a supported file cannot be read.
        """
        ...

    def supports(self, path: str) -> bool:
        return Path(path).suffix in _GRAMMARS


# ===================================================================
# Tree-sitter implementation
# ===================================================================

class TreeSitterSourceParser(SourceParser):
    """Python, JavaScript and TypeScript parser over Tree-sitter grammars."""

    def __init__(self) -> None:
        self._parsers: Dict[str, Parser] = {}

    def _parser_for(self, ext: str) -> Parser:
        parser = self._parsers.get(ext)
        if parser is None:
            parser = Parser(Language(_GRAMMARS[ext]()))
            self._parsers[ext] = parser
            logger.debug("Loaded tree-sitter grammar for %s", ext)
        return parser

    async def parse(self, path: str) -> Optional[ParsedFile]:
        if not self.supports(path):
            logger.debug("Unsupported file type: %s", path)
            return None
        return await asyncio.to_thread(self.parse_sync, path)

    def parse_sync(self, path: str) -> ParsedFile:
        file_path = Path(path)
        try:
            source = file_path.read_bytes()
        except OSError as exc:
            raise ParseError(f"Cannot read {path}: {exc}") from exc

        ext = file_path.suffix
        tree = self._parser_for(ext).parse(source)
        parsed = ParsedFile(path=str(file_path), language=LANGUAGE_MAP.get(ext, "unknown"))

        if ext == ".py":
            self._walk_python(tree.root_node, parsed, scope=[], in_class=False)
        else:
            self._walk_script(tree.root_node, parsed, scope=[], in_class=False)
        return parsed

    # ------------------------------------------------------------------
    # Python
    # ------------------------------------------------------------------

    def _walk_python(self, node: Any, parsed: ParsedFile, scope: List[str], in_class: bool) -> None:
        for child in node.children:
            definition = child
            if child.type == "decorated_definition":
                definition = child.child_by_field_name("definition")
                if definition is None:
                    continue

            if definition.type == "class_definition":
                name = _text(definition.child_by_field_name("name"))
                self._add_entity(parsed, "class", name, child, scope)
                body = definition.child_by_field_name("body")
                if body is not None:
                    self._walk_python(body, parsed, scope + [name], in_class=True)
            elif definition.type == "function_definition":
                name = _text(definition.child_by_field_name("name"))
                self._add_entity(parsed, "method" if in_class else "function", name, child, scope)
                body = definition.child_by_field_name("body")
                if body is not None:
                    self._walk_python(body, parsed, scope + [name], in_class=False)
            elif child.type == "import_statement":
                self._python_import(child, parsed)
            elif child.type == "import_from_statement":
                self._python_from_import(child, parsed)
            elif child.type in ("if_statement", "try_statement", "block", "else_clause",
                                "except_clause", "finally_clause", "with_statement"):
                self._walk_python(child, parsed, scope, in_class)

    @staticmethod
    def _python_import(node: Any, parsed: ParsedFile) -> None:
        for name_node in node.children_by_field_name("name"):
            target = name_node
            alias = None
            if name_node.type == "aliased_import":
                target = name_node.child_by_field_name("name")
                alias = _text(name_node.child_by_field_name("alias"))
            module = _text(target)
            parsed.imports.append(ParsedImport(
                source=module,
                specifiers=[alias or module.split(".")[-1]],
                is_default=False,
                line=_line(node),
            ))

    @staticmethod
    def _python_from_import(node: Any, parsed: ParsedFile) -> None:
        module_node = node.child_by_field_name("module_name")
        names: List[str] = []
        for name_node in node.children_by_field_name("name"):
            if name_node.type == "aliased_import":
                name_node = name_node.child_by_field_name("name")
            names.append(_text(name_node))
        if any(child.type == "wildcard_import" for child in node.children):
            names.append("*")

        module = _text(module_node)
        if not module.startswith("."):
            parsed.imports.append(ParsedImport(source=module, specifiers=names, line=_line(node)))
            return

        # relative import: leading dots become ./ and ../ segments
        dots = len(module) - len(module.lstrip("."))
        prefix = "./" if dots == 1 else "../" * (dots - 1)
        remainder = module[dots:].replace(".", "/")
        if remainder:
            parsed.imports.append(ParsedImport(source=prefix + remainder, specifiers=names, line=_line(node)))
            return
        # ``from . import a, b`` imports sibling modules
        for name in names:
            if name == "*":
                continue
            parsed.imports.append(ParsedImport(source=prefix + name, specifiers=[name], line=_line(node)))

    # ------------------------------------------------------------------
    # JavaScript / TypeScript
    # ------------------------------------------------------------------

    def _walk_script(self, node: Any, parsed: ParsedFile, scope: List[str], in_class: bool) -> None:
        for child in node.children:
            kind = child.type

            if kind in _SCRIPT_CLASS_TYPES:
                name = _text(child.child_by_field_name("name"))
                self._add_entity(parsed, "class", name, child, scope)
                body = child.child_by_field_name("body")
                if body is not None:
                    self._walk_script(body, parsed, scope + [name], in_class=True)
                continue
            if kind in _SCRIPT_FUNCTION_TYPES:
                name = _text(child.child_by_field_name("name"))
                self._add_entity(parsed, "function", name, child, scope)
                self._walk_script(child, parsed, scope + [name], in_class=False)
                continue
            if kind == "method_definition" and in_class:
                name = _text(child.child_by_field_name("name"))
                self._add_entity(parsed, "method", name, child, scope)
                self._walk_script(child, parsed, scope + [name], in_class=False)
                continue
            if kind == "interface_declaration":
                self._add_entity(parsed, "interface", _text(child.child_by_field_name("name")), child, scope)
                continue
            if kind == "variable_declarator":
                value = child.child_by_field_name("value")
                if value is not None and value.type in _SCRIPT_FUNCTION_VALUES:
                    name = _text(child.child_by_field_name("name"))
                    self._add_entity(parsed, "function", name, child, scope)
                    self._walk_script(value, parsed, scope + [name], in_class=False)
                    continue
            if kind == "import_statement":
                self._script_import(child, parsed)
                continue
            if kind == "export_statement":
                self._script_export(child, parsed)
            if kind == "call_expression":
                self._script_require(child, parsed)

            self._walk_script(child, parsed, scope, in_class)

    @staticmethod
    def _script_import(node: Any, parsed: ParsedFile) -> None:
        specifiers: List[str] = []
        is_default = False
        for clause in node.children:
            if clause.type != "import_clause":
                continue
            for part in clause.named_children:
                if part.type == "identifier":
                    is_default = True
                    specifiers.append(_text(part))
                elif part.type == "named_imports":
                    for spec in part.named_children:
                        if spec.type == "import_specifier":
                            specifiers.append(_text(spec.child_by_field_name("name")))
                elif part.type == "namespace_import":
                    specifiers.extend(_text(n) for n in part.named_children if n.type == "identifier")
        parsed.imports.append(ParsedImport(
            source=_unquote(_text(node.child_by_field_name("source"))),
            specifiers=specifiers,
            is_default=is_default,
            line=_line(node),
        ))

    @staticmethod
    def _script_require(node: Any, parsed: ParsedFile) -> None:
        function = node.child_by_field_name("function")
        arguments = node.child_by_field_name("arguments")
        if function is None or arguments is None:
            return
        if function.type not in ("import", "identifier") or (
            function.type == "identifier" and _text(function) != "require"
        ):
            return
        strings = [arg for arg in arguments.named_children if arg.type == "string"]
        if strings:
            parsed.imports.append(ParsedImport(source=_unquote(_text(strings[0])), line=_line(node)))

    def _script_export(self, node: Any, parsed: ParsedFile) -> None:
        is_default = any(child.type == "default" for child in node.children)
        line = _line(node)

        source = node.child_by_field_name("source")
        if source is not None:
            parsed.imports.append(ParsedImport(source=_unquote(_text(source)), line=line))

        declaration = node.child_by_field_name("declaration")
        if declaration is not None:
            name_node = declaration.child_by_field_name("name")
            if name_node is not None:
                parsed.exports.append(ParsedExport(name=_text(name_node), is_default=is_default, line=line))
            else:
                for declarator in declaration.named_children:
                    if declarator.type == "variable_declarator":
                        parsed.exports.append(ParsedExport(
                            name=_text(declarator.child_by_field_name("name")),
                            is_default=is_default,
                            line=line,
                        ))
            return

        for clause in node.named_children:
            if clause.type == "export_clause":
                for spec in clause.named_children:
                    if spec.type == "export_specifier":
                        parsed.exports.append(ParsedExport(
                            name=_text(spec.child_by_field_name("name")), line=line,
                        ))
                return

        if is_default:
            parsed.exports.append(ParsedExport(name="default", is_default=True, line=line))

    # ------------------------------------------------------------------
    # Shared
    # ------------------------------------------------------------------

    @staticmethod
    def _add_entity(parsed: ParsedFile, kind: str, name: str, node: Any, scope: List[str]) -> None:
        if not name:
            return
        qualname = ".".join(scope + [name])
        parent_id = None
        if scope:
            parent_id = next(
                (e.id for e in reversed(parsed.entities) if e.id.endswith(":" + ".".join(scope))),
                None,
            )
        parsed.entities.append(ParsedEntity(
            id=f"{kind}:{qualname}",
            type=kind,
            name=name,
            start_line=_line(node),
            end_line=_end_line(node),
            parent_id=parent_id,
        ))
