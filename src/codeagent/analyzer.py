"""Code analysis utilities for extracting structure from source files."""

import ast
import logging
import re
from typing import Dict, Iterable, List

from .models import DependencyRecord, ExportRef, ImportRef, SymbolRef

logger = logging.getLogger(__name__)

JS_LANGUAGES = {'javascript', 'typescript', 'vue', 'svelte'}

_JS_IMPORT_FROM = re.compile(r'^[ \t]*import\s+(.+?)\s+from\s+[\'"]([^\'"]+)[\'"]', re.MULTILINE)
_JS_IMPORT_BARE = re.compile(r'^[ \t]*import\s+[\'"]([^\'"]+)[\'"]', re.MULTILINE)
_JS_REQUIRE = re.compile(r'(?:(?:const|let|var)\s+([\w{}\s,]+?)\s*=\s*)?require\s*\(\s*[\'"]([^\'"]+)[\'"]\s*\)')
_JS_EXPORT_DECL = re.compile(
    r'^[ \t]*export\s+(?:default\s+)?(?:async\s+)?'
    r'(?:function\*?|class|const|let|var|interface|type|enum)\s+(\w+)',
    re.MULTILINE,
)
_JS_EXPORT_LIST = re.compile(r'^[ \t]*export\s*\{([^}]*)\}', re.MULTILINE)
_JS_EXPORT_DEFAULT_NAME = re.compile(r'^[ \t]*export\s+default\s+(\w+)[ \t]*;?[ \t]*$', re.MULTILINE)
_JS_MODULE_EXPORTS = re.compile(r'module\.exports\s*=\s*(\{[^}]*\}|\w+)')
_JS_FUNCTION = re.compile(
    r'^[ \t]*(?:export\s+)?(?:default\s+)?(?:async\s+)?function\*?\s+(\w+)\s*(\([^)]*\))'
    r'|^[ \t]*(?:export\s+)?(?:const|let|var)\s+(\w+)\s*=\s*(?:async\s+)?(\([^)]*\)|\w+)\s*=>',
    re.MULTILINE,
)
_JS_CLASS = re.compile(r'^[ \t]*(?:export\s+)?(?:default\s+)?class\s+(\w+)', re.MULTILINE)

_PY_IMPORT = re.compile(r'^[ \t]*import\s+([\w.]+)', re.MULTILINE)
_PY_FROM_IMPORT = re.compile(r'^[ \t]*from\s+([\w.]+)\s+import\s+(.+)$', re.MULTILINE)
_PY_FUNCTION = re.compile(r'^([ \t]*)(?:async\s+)?def\s+(\w+)\s*(\([^)]*\))?', re.MULTILINE)
_PY_CLASS = re.compile(r'^([ \t]*)class\s+(\w+)', re.MULTILINE)

_JSDOC = re.compile(r'/\*\*.*?\*/', re.DOTALL)
_LINE_COMMENT = re.compile(r'^[ \t]*//[ \t]*(.+)$', re.MULTILINE)
_PY_DOCSTRING = re.compile(r'"""(.*?)"""', re.DOTALL)
_PY_COMMENT = re.compile(r'^[ \t]*#[ \t]*(.+)$', re.MULTILINE)
_MD_HEADER = re.compile(r'^#{1,6}[ \t]+(.+)$', re.MULTILINE)

MAX_DOC_EXCERPTS = 5


def _line_of(content: str, offset: int) -> int:
    return content.count('\n', 0, offset) + 1


def _split_names(raw: str) -> List[str]:
    """Turn ``{ a, b as c }`` or ``React, { useState }`` into bare names."""
    names = []
    for part in re.split(r'[,{}]', raw):
        part = part.strip()
        if not part or part == '*':
            continue
        if ' as ' in part:
            part = part.split(' as ')[-1].strip()
        if part.startswith('* as '):
            part = part[5:].strip()
        if re.fullmatch(r'\w+', part):
            names.append(part)
    return names


def _unique(values: Iterable[str]) -> List[str]:
    seen = []
    for value in values:
        if value not in seen:
            seen.append(value)
    return seen


class CodeAnalyzer:
    """Analyzes code files to extract structure information."""

    @staticmethod
    def analyze(path: str, content: str, language: str) -> DependencyRecord:
        """Build the dependency record for one file.

        Best effort: unknown languages yield an empty record.
        """
        if language == 'python':
            record = CodeAnalyzer.analyze_python(content)
        elif language in JS_LANGUAGES:
            record = CodeAnalyzer.analyze_javascript(content)
        else:
            record = DependencyRecord(path=path)
        record.path = path
        return record

    @staticmethod
    def analyze_python(content: str) -> DependencyRecord:
        """Extract functions, classes, and imports from Python code."""
        record = DependencyRecord(path="")
        try:
            tree = ast.parse(content)
        except (SyntaxError, ValueError):
            logger.debug("Python source does not parse, falling back to regex analysis")
            return CodeAnalyzer._analyze_python_regex(content)

        for node in tree.body:
            if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)):
                args = ", ".join(arg.arg for arg in node.args.args)
                record.functions.append(SymbolRef(node.name, node.lineno, f"{node.name}({args})"))
                if not node.name.startswith('_'):
                    record.exports.append(ExportRef(node.lineno, [node.name]))
            elif isinstance(node, ast.ClassDef):
                record.classes.append(SymbolRef(node.name, node.lineno))
                if not node.name.startswith('_'):
                    record.exports.append(ExportRef(node.lineno, [node.name]))

        for node in ast.walk(tree):
            if isinstance(node, ast.Import):
                for alias in node.names:
                    record.imports.append(ImportRef(alias.name, node.lineno, [alias.asname or alias.name]))
            elif isinstance(node, ast.ImportFrom):
                module = "." * node.level + (node.module or "")
                items = [alias.asname or alias.name for alias in node.names]
                record.imports.append(ImportRef(module, node.lineno, items))
        record.imports.sort(key=lambda ref: ref.line)
        return record

    @staticmethod
    def _analyze_python_regex(content: str) -> DependencyRecord:
        record = DependencyRecord(path="")
        for match in _PY_IMPORT.finditer(content):
            record.imports.append(ImportRef(match.group(1), _line_of(content, match.start())))
        for match in _PY_FROM_IMPORT.finditer(content):
            items = _split_names(match.group(2).strip('() '))
            record.imports.append(ImportRef(match.group(1), _line_of(content, match.start()), items))
        record.imports.sort(key=lambda ref: ref.line)

        for match in _PY_FUNCTION.finditer(content):
            line = _line_of(content, match.start(2))
            name = match.group(2)
            record.functions.append(SymbolRef(name, line, name + (match.group(3) or "()")))
            if not match.group(1) and not name.startswith('_'):
                record.exports.append(ExportRef(line, [name]))
        for match in _PY_CLASS.finditer(content):
            line = _line_of(content, match.start(2))
            record.classes.append(SymbolRef(match.group(2), line))
            if not match.group(1) and not match.group(2).startswith('_'):
                record.exports.append(ExportRef(line, [match.group(2)]))
        record.exports.sort(key=lambda ref: ref.line)
        return record

    @staticmethod
    def analyze_javascript(content: str) -> DependencyRecord:
        """Extract imports, exports, functions and classes from JavaScript/TypeScript."""
        record = DependencyRecord(path="")

        for match in _JS_IMPORT_FROM.finditer(content):
            record.imports.append(
                ImportRef(match.group(2), _line_of(content, match.start()), _split_names(match.group(1)))
            )
        for match in _JS_IMPORT_BARE.finditer(content):
            record.imports.append(ImportRef(match.group(1), _line_of(content, match.start())))
        for match in _JS_REQUIRE.finditer(content):
            items = _split_names(match.group(1)) if match.group(1) else []
            record.imports.append(ImportRef(match.group(2), _line_of(content, match.start()), items))
        record.imports.sort(key=lambda ref: ref.line)

        for match in _JS_EXPORT_DECL.finditer(content):
            record.exports.append(ExportRef(_line_of(content, match.start()), [match.group(1)]))
        for match in _JS_EXPORT_LIST.finditer(content):
            record.exports.append(ExportRef(_line_of(content, match.start()), _split_names(match.group(1))))
        for match in _JS_EXPORT_DEFAULT_NAME.finditer(content):
            record.exports.append(ExportRef(_line_of(content, match.start()), [match.group(1)]))
        for match in _JS_MODULE_EXPORTS.finditer(content):
            record.exports.append(ExportRef(_line_of(content, match.start()), _split_names(match.group(1))))
        record.exports.sort(key=lambda ref: ref.line)

        for match in _JS_FUNCTION.finditer(content):
            if match.group(1):
                name, params = match.group(1), match.group(2)
            else:
                name, params = match.group(3), match.group(4)
                if not params.startswith('('):
                    params = f"({params})"
            record.functions.append(SymbolRef(name, _line_of(content, match.start()), name + params))
        for match in _JS_CLASS.finditer(content):
            record.classes.append(SymbolRef(match.group(1), _line_of(content, match.start())))
        return record

    @staticmethod
    def extract_functions(text: str, language: str) -> List[str]:
        """Function names declared in a fragment of code."""
        if language == 'python':
            return _unique(match.group(2) for match in _PY_FUNCTION.finditer(text))
        if language in JS_LANGUAGES:
            return _unique(match.group(1) or match.group(3) for match in _JS_FUNCTION.finditer(text))
        return []

    @staticmethod
    def extract_classes(text: str, language: str) -> List[str]:
        if language == 'python':
            return _unique(match.group(2) for match in _PY_CLASS.finditer(text))
        if language in JS_LANGUAGES:
            return _unique(match.group(1) for match in _JS_CLASS.finditer(text))
        return []

    @staticmethod
    def extract_doc_excerpts(text: str, language: str) -> List[str]:
        """Short documentation snippets (doc comments, docstrings, headers)."""
        excerpts: List[str] = []
        if language == 'python':
            excerpts.extend(match.group(1).strip() for match in _PY_DOCSTRING.finditer(text))
            excerpts.extend(match.group(1).strip() for match in _PY_COMMENT.finditer(text))
        elif language == 'markdown':
            excerpts.extend(match.group(1).strip() for match in _MD_HEADER.finditer(text))
        else:
            for match in _JSDOC.finditer(text):
                body = re.sub(r'^\s*/?\*+/?', '', match.group(0), flags=re.MULTILINE)
                excerpts.append(" ".join(body.split()))
            excerpts.extend(match.group(1).strip() for match in _LINE_COMMENT.finditer(text))
        return [excerpt for excerpt in excerpts if excerpt][:MAX_DOC_EXCERPTS]

    @staticmethod
    def link_references(records: Dict[str, DependencyRecord], contents: Dict[str, str]) -> None:
        """Fill ``references``/``used_by`` from exported names mentioned in other files."""
        patterns = {}
        for path, record in records.items():
            record.references = []
            record.used_by = []
            names = [name for name in _unique(record.exported_names) if len(name) > 2 and name != 'default']
            if names:
                patterns[path] = re.compile(r'\b(' + '|'.join(re.escape(n) for n in names) + r')\b')

        for path, record in records.items():
            content = contents.get(path, "")
            for other_path, pattern in patterns.items():
                if other_path == path:
                    continue
                if pattern.search(content):
                    record.references.append(other_path)
                    records[other_path].used_by.append(path)
