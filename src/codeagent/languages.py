"""Language detection, file categorisation and chunk purpose tagging."""

import re
from pathlib import PurePosixPath
from typing import Dict, List, Pattern

LANGUAGE_MAP: Dict[str, str] = {
    '.js': 'javascript', '.jsx': 'javascript', '.mjs': 'javascript', '.cjs': 'javascript',
    '.ts': 'typescript', '.tsx': 'typescript',
    '.py': 'python', '.java': 'java', '.cpp': 'cpp', '.c': 'c', '.h': 'c', '.hpp': 'cpp',
    '.css': 'css', '.scss': 'scss', '.less': 'less', '.html': 'html', '.htm': 'html',
    '.json': 'json', '.xml': 'xml', '.yaml': 'yaml', '.yml': 'yaml', '.toml': 'toml',
    '.md': 'markdown', '.rst': 'text', '.txt': 'text',
    '.sh': 'shell', '.bash': 'shell', '.zsh': 'shell', '.fish': 'shell',
    '.ps1': 'powershell', '.bat': 'batch', '.cmd': 'batch',
    '.vue': 'vue', '.svelte': 'svelte', '.php': 'php', '.rb': 'ruby', '.go': 'go',
    '.rs': 'rust', '.swift': 'swift', '.kt': 'kotlin', '.scala': 'scala',
    '.sql': 'sql', '.graphql': 'graphql', '.gql': 'graphql',
}

SOURCE_LANGUAGES = {
    'javascript', 'typescript', 'python', 'java', 'cpp', 'c', 'vue', 'svelte',
    'php', 'ruby', 'go', 'rust', 'swift', 'kotlin', 'scala', 'shell',
    'powershell', 'batch', 'sql', 'graphql',
}

CONFIG_SUFFIXES = {'.json', '.yaml', '.yml', '.toml', '.ini', '.cfg', '.conf', '.env'}
CONFIG_NAMES = {
    'package.json', 'package-lock.json', 'yarn.lock', 'pnpm-lock.yaml', 'tsconfig.json',
    'requirements.txt', 'setup.py', 'setup.cfg', 'pyproject.toml', 'Cargo.toml', 'go.mod',
    'Dockerfile', 'docker-compose.yml', 'Makefile', '.gitignore', '.env.example',
}
ASSET_LANGUAGES = {'css', 'scss', 'less', 'html', 'xml'}
ASSET_DIRS = {'public', 'static', 'assets'}
TEST_DIRS = {'test', 'tests', 'spec', '__tests__'}
DOC_DIRS = {'doc', 'docs', 'documentation'}

DOC_NAME_PATTERN = re.compile(
    r'^(readme|architecture|contributing|api|setup|install|changelog|license|todo)'
    r'\.(md|txt|rst)$',
    re.IGNORECASE,
)
TEST_NAME_PATTERN = re.compile(r'^(test_.*|.*_test\.\w+|.*\.(test|spec)\.\w+)$')

_JS_BOUNDARIES = [
    r'^export\s+(class|function|const|let|var|default)',
    r'^import\s+',
    r'^class\s+\w+',
    r'^function\s+\w+',
    r'^const\s+\w+',
    r'^let\s+\w+',
    r'^var\s+\w+',
    r'^if\s*\(',
    r'^for\s*\(',
    r'^while\s*\(',
    r'^switch\s*\(',
    r'^try\s*\{',
    r'^(describe|it|test|beforeEach|afterEach|beforeAll|afterAll)\s*\(',
    r'^/\*\*',
    r'^\s*//\s*(===|---)',
]

BOUNDARY_PATTERNS: Dict[str, List[Pattern]] = {
    'javascript': [re.compile(p) for p in _JS_BOUNDARIES],
    'typescript': [re.compile(p) for p in _JS_BOUNDARIES + [
        r'^export\s+(interface|type|enum)',
        r'^interface\s+\w+',
        r'^type\s+\w+',
        r'^enum\s+\w+',
        r'^namespace\s+\w+',
    ]],
    'python': [re.compile(p) for p in [
        r'^import\s+',
        r'^from\s+[\w.]+\s+import',
        r'^class\s+\w+',
        r'^(async\s+)?def\s+\w+',
        r'^@\w+',
        r'^if\s+__name__\s*==',
        r'^try:',
        r'^with\s+',
        r'^for\s+\w+\s+in',
        r'^while\s+',
        r'^("""|\'\'\')',
        r'^#\s*(===|---)',
    ]],
    'markdown': [re.compile(p) for p in [
        r'^#{1,6}\s+',
        r'^```',
        r'^---$',
        r'^===',
    ]],
}

# Checked in order; the first category with a keyword hit names the purpose.
PURPOSE_KEYWORDS = [
    ('authentication', ['login', 'auth', 'signin', 'signout', 'register', 'password']),
    ('data-management', ['create', 'read', 'update', 'delete', 'crud', 'database', 'query']),
    ('ui-component', ['component', 'render', 'display', 'view', 'interface']),
    ('business-logic', ['business', 'logic', 'rules', 'validation', 'process']),
    ('utility', ['util', 'helper', 'tool', 'format', 'parse', 'convert']),
    ('configuration', ['config', 'settings', 'options', 'environment']),
    ('testing', ['test', 'spec', 'mock', 'stub', 'fixture', 'assert']),
    ('documentation', ['doc', 'comment', 'readme', 'guide', 'tutorial']),
]


def detect_language(path: str) -> str:
    """Map a file name to a language tag, ``text`` when unknown."""
    return LANGUAGE_MAP.get(PurePosixPath(path).suffix.lower(), 'text')


def is_documentation(path: str) -> bool:
    posix = PurePosixPath(path)
    if DOC_NAME_PATTERN.match(posix.name):
        return True
    return any(part.lower() in DOC_DIRS for part in posix.parts[:-1])


def categorize(path: str) -> str:
    """Classify a relative path as source, test, config, doc, asset or other."""
    posix = PurePosixPath(path)
    name = posix.name
    dirs = {part.lower() for part in posix.parts[:-1]}
    language = detect_language(path)

    if dirs & TEST_DIRS or TEST_NAME_PATTERN.match(name):
        return 'test'
    if name in CONFIG_NAMES or posix.suffix.lower() in CONFIG_SUFFIXES:
        return 'config'
    if is_documentation(path) or language == 'markdown' or posix.suffix.lower() == '.rst':
        return 'doc'
    if language in ASSET_LANGUAGES or dirs & ASSET_DIRS:
        return 'asset'
    if language in SOURCE_LANGUAGES:
        return 'source'
    return 'other'


def is_boundary(line: str, language: str) -> bool:
    """Check whether a raw line starts a new semantic unit."""
    patterns = BOUNDARY_PATTERNS.get(language, BOUNDARY_PATTERNS['javascript'])
    return any(pattern.match(line) for pattern in patterns)


def detect_purpose(text: str) -> str:
    lowered = text.lower()
    for purpose, keywords in PURPOSE_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return purpose
    return 'general'
