"""Recovery parser for model replies.

The model is asked for a JSON object ``{analysis, actions, explanation}``
but frequently returns it wrapped in prose or markdown fences, truncated,
or with unescaped quotes inside file contents. ``ResponseParser`` extracts
a candidate and runs a chain of increasingly aggressive repair strategies,
accepting the first one that decodes. The decoded value is then validated
against :class:`~codeagent.actions.AgentResponse`.

``ResponseParser.parse`` never raises: unrecoverable input produces a
fallback response with an empty action list.
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence, Tuple

from pydantic import ValidationError

from .actions import AgentResponse
from .errors import ResponseParseError

logger = logging.getLogger(__name__)

Strategy = Callable[[str], Any]

FALLBACK_EXPLANATION = (
    "AI response parsing failed due to malformed JSON. No files will be created "
    "automatically. Please try your request again or rephrase it."
)
LARGE_RESPONSE = 15000

_FENCE = re.compile(r'```(?:json|JSON)?\s*(.*?)\s*```', re.DOTALL)
_OPEN_FENCE = re.compile(r'```(?:json|JSON)?\s*(.*)$', re.DOTALL)
_CONTROL_CHARS = re.compile(r'[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]')
_CONTENT_KEY = re.compile(r'"content"\s*:\s*"')
# A quote closes a content value only when what follows looks like JSON structure.
_VALUE_TERMINATOR = re.compile(r'\s*(?:,\s*"[A-Za-z_][\w-]*"\s*:|[}\]]|\Z)')
_DANGLING_KEY = re.compile(r',?\s*"(?:[^"\\]|\\.)*"\s*:\s*$')
_DANGLING_KEY_NO_COLON = re.compile(r'([{,])\s*"(?:[^"\\]|\\.)*"\s*$')

_BARE_KEY = re.compile(r'([{,]\s*)([A-Za-z_][A-Za-z0-9_]*)\s*:')
_BARE_VALUE = re.compile(r':\s*([A-Za-z_][A-Za-z0-9_]*)\s*([,}\]])')
_MISSING_OBJECT_COMMA = re.compile(r'}\s*{')
_MISSING_ARRAY_COMMA = re.compile(r']\s*\[')
_ADJACENT_STRINGS = re.compile(r'"\s+"')
_MISSING_KEY_COMMA = re.compile(
    r'"\s*"(type|path|content|reason|dependencies|analysis|actions|explanation)"\s*:'
)
JSON_LITERALS = {'true', 'false', 'null'}


@dataclass
class ParseOutcome:
    """Result of parsing one model reply."""

    response: AgentResponse
    strategy: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def fallback_response(error: str) -> AgentResponse:
    return AgentResponse(
        analysis=(
            f"Failed to parse AI response: {error}. "
            "The AI response contained malformed JSON that could not be parsed."
        ),
        actions=[],
        explanation=FALLBACK_EXPLANATION,
    )


# -- text helpers ---------------------------------------------------------

def _scan_balance(text: str) -> Tuple[list, bool, bool]:
    """Walk ``text`` tracking strings and escapes.

    Returns the stack of unclosed openers, whether the text ends inside a
    string and whether it ends on a dangling backslash.
    """
    stack = []
    in_string = False
    escape = False
    for ch in text:
        if in_string:
            if escape:
                escape = False
            elif ch == '\\':
                escape = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in '{[':
            stack.append(ch)
        elif ch in '}]' and stack:
            stack.pop()
    return stack, in_string, escape


def _outer_object(raw: str) -> Optional[str]:
    """The span from the first ``{`` to the last ``}`` when it decodes as is."""
    start = raw.find('{')
    end = raw.rfind('}')
    if start == -1 or end <= start:
        return None
    candidate = raw[start:end + 1]
    try:
        json.loads(candidate)
    except ValueError:
        return None
    return candidate


def _fenced_body(raw: str) -> Optional[str]:
    """Body of the first markdown fence that opens before any ``{``."""
    for pattern in (_FENCE, _OPEN_FENCE):
        match = pattern.search(raw)
        # A fence after the first brace sits inside a JSON string.
        if match and '{' in match.group(1) and '{' not in raw[:match.start()]:
            return match.group(1)
    return None


def extract_candidate(raw: str) -> str:
    """Pull the JSON object out of a reply that may contain prose or fences."""
    whole = _outer_object(raw)
    if whole is not None:
        return whole
    text = _fenced_body(raw) or raw

    start = text.find('{')
    if start == -1:
        return text.strip()
    end = text.rfind('}')
    if end > start:
        candidate = text[start:end + 1]
        stack, in_string, _ = _scan_balance(candidate)
        if not stack and not in_string:
            return candidate
    tail = text[start:].rstrip()
    if tail.endswith('```'):
        tail = tail[:-3].rstrip()
    return tail


def strip_trailing_commas(text: str) -> str:
    """Remove commas directly before ``}`` or ``]``, leaving string contents alone."""
    out = []
    in_string = False
    escape = False
    i = 0
    length = len(text)
    while i < length:
        ch = text[i]
        if in_string:
            out.append(ch)
            if escape:
                escape = False
            elif ch == '\\':
                escape = True
            elif ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
            out.append(ch)
        elif ch == ',':
            j = i + 1
            while j < length and text[j].isspace():
                j += 1
            if j >= length or text[j] not in '}]':
                out.append(ch)
        else:
            out.append(ch)
        i += 1
    return ''.join(out)


def clean_json(text: str) -> str:
    text = strip_trailing_commas(text)
    text = _CONTROL_CHARS.sub('', text)
    return text.strip()


def escape_content_quotes(text: str) -> str:
    """Escape stray quotes inside every ``"content": "..."`` value."""
    out = []
    pos = 0
    length = len(text)
    while True:
        match = _CONTENT_KEY.search(text, pos)
        if match is None:
            out.append(text[pos:])
            break
        out.append(text[pos:match.end()])
        i = match.end()
        closed = False
        while i < length:
            ch = text[i]
            if ch == '\\' and i + 1 < length:
                out.append(text[i:i + 2])
                i += 2
                continue
            if ch == '"':
                if _VALUE_TERMINATOR.match(text, i + 1):
                    out.append('"')
                    i += 1
                    closed = True
                    break
                out.append('\\"')
            elif ch == '\\':
                # Lone backslash at the very end.
                out.append('\\\\')
            else:
                out.append(ch)
            i += 1
        pos = i
        if not closed:
            break
    return ''.join(out)


def complete_truncated(text: str) -> str:
    """Close an unterminated string and any open containers, innermost first."""
    text = text.rstrip()
    stack, in_string, escape = _scan_balance(text)
    if in_string:
        if escape:
            text = text[:-1]
        text += '"'

    while True:
        stripped = text.rstrip()
        if stripped.endswith(','):
            text = stripped[:-1]
            continue
        if stripped.endswith(':'):
            text = _DANGLING_KEY.sub('', stripped)
            continue
        if stack and stack[-1] == '{' and _DANGLING_KEY_NO_COLON.search(stripped):
            text = _DANGLING_KEY_NO_COLON.sub(r'\1', stripped)
            continue
        text = stripped
        break

    closers = ''.join('}' if opener == '{' else ']' for opener in reversed(stack))
    return text + closers


def _quote_bare_value(match: re.Match) -> str:
    value, closer = match.group(1), match.group(2)
    if value in JSON_LITERALS:
        return match.group(0)
    return f':"{value}"{closer}'


def aggressive_repair(text: str) -> str:
    text = _BARE_KEY.sub(r'\1"\2":', text)
    text = _BARE_VALUE.sub(_quote_bare_value, text)
    text = _MISSING_OBJECT_COMMA.sub('},{', text)
    text = _MISSING_ARRAY_COMMA.sub('],[', text)
    text = _MISSING_KEY_COMMA.sub(r'", "\1":', text)
    text = _ADJACENT_STRINGS.sub('", "', text)
    text = escape_content_quotes(text)
    text = strip_trailing_commas(text)
    return complete_truncated(text)


# -- strategies -----------------------------------------------------------

def parse_direct(text: str) -> Any:
    return json.loads(text)


def parse_cleaned(text: str) -> Any:
    return json.loads(clean_json(text), strict=False)


def parse_content_fix(text: str) -> Any:
    return json.loads(clean_json(escape_content_quotes(text)), strict=False)


def parse_truncated(text: str) -> Any:
    return json.loads(clean_json(complete_truncated(text)), strict=False)


def parse_aggressive(text: str) -> Any:
    return json.loads(clean_json(aggressive_repair(text)), strict=False)


STRATEGIES: Sequence[Tuple[str, Strategy]] = (
    ("direct", parse_direct),
    ("cleanup", parse_cleaned),
    ("content_fix", parse_content_fix),
    ("truncation_repair", parse_truncated),
    ("aggressive_repair", parse_aggressive),
)


def first_success(strategies: Sequence[Tuple[str, Strategy]]) -> Callable[[str], Tuple[str, Any]]:
    """Combine strategies; the returned callable yields ``(name, value)`` of the first that works."""

    def run(text: str) -> Tuple[str, Any]:
        last_error = "no strategies"
        for name, strategy in strategies:
            try:
                value = strategy(text)
            except (ValueError, RecursionError) as e:
                logger.debug(f"Parse strategy {name} failed: {e}")
                last_error = str(e)
                continue
            logger.debug(f"Parsed response with strategy {name}")
            return name, value
        raise ResponseParseError(last_error)

    return run


def _describe_validation_error(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = '.'.join(str(part) for part in item['loc'])
        parts.append(f"{location}: {item['msg']}" if location else item['msg'])
    return "; ".join(parts)


class ResponseParser:
    """Turns raw model text into a validated AgentResponse."""

    def __init__(self, strategies: Sequence[Tuple[str, Strategy]] = STRATEGIES):
        self._decode = first_success(strategies)

    def parse(self, raw: Optional[str]) -> ParseOutcome:
        if not isinstance(raw, str) or not raw.strip():
            return ParseOutcome(fallback_response("empty response"), error="empty response")

        if len(raw) > LARGE_RESPONSE:
            logger.info(f"Large response ({len(raw)} characters)")
        candidate = extract_candidate(raw)

        try:
            strategy, value = self._decode(candidate)
        except ResponseParseError as e:
            logger.warning(f"Failed to parse AI response: {e}")
            logger.debug(f"Raw response preview: {raw[:1000]}")
            return ParseOutcome(fallback_response(str(e)), error=str(e))

        if not isinstance(value, dict):
            error = "response is not a JSON object"
            return ParseOutcome(fallback_response(error), strategy=strategy, error=error)
        try:
            response = AgentResponse.model_validate(value)
        except ValidationError as e:
            error = _describe_validation_error(e)
            logger.warning(f"AI response failed validation: {error}")
            return ParseOutcome(fallback_response(error), strategy=strategy, error=error)
        return ParseOutcome(response, strategy=strategy)
