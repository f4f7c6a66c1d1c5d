"""Heuristic classification of free-text requests."""

import re
from dataclasses import dataclass, field
from typing import List, Optional

INTENT_RULES = [
    ('create', re.compile(r'\b(create|add|new|generate|build)\b')),
    ('edit', re.compile(r'\b(edit|update|modify|change)\b')),
    ('delete', re.compile(r'\b(delete|remove)\b')),
    ('fix', re.compile(r'\b(fix|bug|error|broken)\b')),
    ('refactor', re.compile(r'\b(refactor|improve|clean\s*up)\b')),
]

FILE_OPERATION_RULES = [
    ('create_component', re.compile(r'\b(component|react)')),
    ('create_hook', re.compile(r'\bhooks?\b|\buse(state|effect|context|reducer|memo|callback|ref)\b')),
    ('create_style', re.compile(r'\b(style|css|scss|stylesheet)')),
    ('update_config', re.compile(r'\bconfig|package\.json')),
    ('create_test', re.compile(r'\b(test|spec)')),
]

COMPLEX_KEYWORDS = re.compile(r'\b(component|hook|service|api|database|state|routing)', re.IGNORECASE)

STOPWORDS = {
    'the', 'and', 'or', 'but', 'for', 'with', 'this', 'that', 'will', 'want',
    'make', 'create', 'add', 'edit', 'update', 'please', 'can', 'you', 'into',
    'from', 'some', 'should',
}


@dataclass
class RequestAnalysis:
    intent: str
    file_operations: List[str] = field(default_factory=list)
    keywords: List[str] = field(default_factory=list)
    complexity: str = 'low'
    current_file: Optional[str] = None


def detect_intent(request: str) -> str:
    lowered = request.lower()
    for intent, pattern in INTENT_RULES:
        if pattern.search(lowered):
            return intent
    return 'general'


def detect_file_operations(request: str) -> List[str]:
    lowered = request.lower()
    return [operation for operation, pattern in FILE_OPERATION_RULES if pattern.search(lowered)]


def extract_keywords(request: str) -> List[str]:
    """Distinct non-stopword terms longer than two characters, in order."""
    words = re.sub(r'[^\w\s]', ' ', request.lower()).split()
    keywords: List[str] = []
    for word in words:
        if len(word) > 2 and word not in STOPWORDS and word not in keywords:
            keywords.append(word)
    return keywords


def assess_complexity(request: str) -> str:
    word_count = len(request.split())
    if word_count > 50 or len(detect_file_operations(request)) > 1 or COMPLEX_KEYWORDS.search(request):
        return 'high'
    if word_count > 20:
        return 'medium'
    return 'low'


class RequestAnalyzer:
    """Classifies a request's intent, likely operations, keywords and complexity."""

    def analyze(self, request: str, current_file: Optional[str] = None) -> RequestAnalysis:
        return RequestAnalysis(
            intent=detect_intent(request),
            file_operations=detect_file_operations(request),
            keywords=extract_keywords(request),
            complexity=assess_complexity(request),
            current_file=current_file,
        )
