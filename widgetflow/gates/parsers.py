from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from widgetflow.errors import ParseError

logger = logging.getLogger(__name__)

SNIPPET_CHARS = 200

_FENCE_RE = re.compile(r"```(?:json|JSON)?[ \t]*\n?(.*?)```", flags=re.DOTALL)
_PAIRS = {"{": "}", "[": "]"}
_OPENERS = {"}": "{", "]": "["}
_PARTIAL_MEMBER_RE = re.compile(
    r'^\s*"(?:[^"\\]|\\.)*"\s*(?::\s*(?P<literal>[^\s"{}\[\],:][^"{}\[\],:]*?)?\s*)?$',
    flags=re.DOTALL,
)
_PARTIAL_ELEMENT_RE = re.compile(r'^\s*(?P<literal>[^\s"{}\[\],:][^"{}\[\],:]*?)\s*$', flags=re.DOTALL)
_COMPLETE_LITERAL_RE = re.compile(r"^(?:true|false|null|-?\d+(?:\.\d+)?(?:[eE][+-]?\d+)?)$")


class _ScanState:
    """String-aware bracket tracking shared by every repair step.

    A quote inside a string only terminates it when the next non-blank
    character is a comma, a colon, a closer matching some open bracket, or
    the end of the buffer; any other quote is an interior quote. A closer
    that matches an outer bracket closes everything above it. Every repair
    step classifies characters this way.
    """

    __slots__ = ("stack", "open_counts", "in_string", "escaped")

    def __init__(self) -> None:
        self.stack: List[str] = []
        self.open_counts: Dict[str, int] = {"{": 0, "[": 0}
        self.in_string = False
        self.escaped = False

    def matches_open(self, closer: str) -> bool:
        return self.open_counts[_OPENERS[closer]] > 0

    def implied_closers(self, closer: str) -> str:
        """Closers for the brackets ``closer`` would close implicitly."""
        opener = _OPENERS[closer]
        implied: List[str] = []
        for pending in reversed(self.stack):
            if pending == opener:
                break
            implied.append(_PAIRS[pending])
        return "".join(implied)

    def advance(self, text: str, idx: int) -> str:
        char = text[idx]
        if self.in_string:
            if self.escaped:
                self.escaped = False
                return "string"
            if char == "\\":
                self.escaped = True
                return "string"
            if char == '"':
                if self._closes_string(text, idx):
                    self.in_string = False
                    return "quote"
                return "interior-quote"
            return "string"
        if char == '"':
            self.in_string = True
            return "quote"
        if char in _PAIRS:
            self.stack.append(char)
            self.open_counts[char] += 1
            return "open"
        if char in _OPENERS:
            if not self.matches_open(char):
                return "stray-close"
            opener = _OPENERS[char]
            while True:
                popped = self.stack.pop()
                self.open_counts[popped] -= 1
                if popped == opener:
                    return "close"
        return "other"

    def _closes_string(self, text: str, idx: int) -> bool:
        for pos in range(idx + 1, len(text)):
            char = text[pos]
            if char.isspace():
                continue
            if char in ",:":
                return True
            return char in _OPENERS and self.matches_open(char)
        return True


def _scan(text: str) -> _ScanState:
    state = _ScanState()
    for idx in range(len(text)):
        state.advance(text, idx)
    return state


def _strip_code_fences(text: str) -> str:
    first_brace = text.find("{")
    for match in _FENCE_RE.finditer(text):
        if "{" in match.group(1) and (first_brace == -1 or match.start() < first_brace):
            return match.group(1).strip()
    stripped = text.strip()
    if stripped.startswith("```"):
        # Opening fence without its closing fence: output was cut off.
        _, _, rest = stripped.partition("\n")
        if "{" in rest:
            return rest.strip()
    return text


def _isolate_object(text: str) -> str:
    spans: List[Tuple[int, int]] = []
    idx = 0
    while idx < len(text):
        start = text.find("{", idx)
        if start == -1:
            break
        state = _ScanState()
        end: Optional[int] = None
        for pos in range(start, len(text)):
            if state.advance(text, pos) == "close" and not state.stack:
                end = pos + 1
                break
        if end is None:
            spans.append((start, len(text)))
            break
        spans.append((start, end))
        idx = end
    if not spans:
        return text.strip()
    start, end = max(spans, key=lambda span: span[1] - span[0])
    return text[start:end]


def _normalize_closers(text: str) -> str:
    state = _ScanState()
    out: List[str] = []
    for idx, char in enumerate(text):
        implied = ""
        if not state.in_string and char in _OPENERS and state.matches_open(char):
            implied = state.implied_closers(char)
        role = state.advance(text, idx)
        if role == "stray-close":
            continue
        out.append(implied + char)
    return "".join(out)


def _remove_trailing_commas(text: str) -> str:
    state = _ScanState()
    out: List[str] = []
    for idx, char in enumerate(text):
        if state.advance(text, idx) == "close":
            pos = len(out) - 1
            while pos >= 0 and out[pos].isspace():
                pos -= 1
            if pos >= 0 and out[pos] == ",":
                while pos >= 0 and (out[pos].isspace() or out[pos] == ","):
                    pos -= 1
                del out[pos + 1:]
        out.append(char)
    return "".join(out)


def _close_dangling_string(text: str) -> str:
    state = _scan(text)
    if not state.in_string:
        return text
    if state.escaped:
        text = text[:-1]
    return text + '"'


def _strip_incomplete_member(text: str) -> str:
    stripped = text.rstrip()
    state = _ScanState()
    boundaries: List[Tuple[int, Optional[str]]] = []
    for idx, char in enumerate(stripped):
        role = state.advance(stripped, idx)
        if role == "open" or (role == "other" and char == ","):
            boundaries.append((idx, state.stack[-1] if state.stack else None))
    if state.in_string:
        return stripped

    end = len(stripped)
    while boundaries:
        boundary, container = boundaries.pop()
        separator = stripped[boundary]
        tail = stripped[boundary + 1:end]
        if not tail.strip():
            if separator != ",":
                break
            end = boundary
            continue
        if container == "{":
            match = _PARTIAL_MEMBER_RE.match(tail)
        elif container == "[":
            match = _PARTIAL_ELEMENT_RE.match(tail)
        else:
            match = None
        if not match:
            break
        literal = match.group("literal")
        if literal is not None and _COMPLETE_LITERAL_RE.match(literal.strip()):
            break
        if separator != ",":
            end = boundary + 1
            break
        end = boundary
    return stripped[:end].rstrip()


def _balance_brackets(text: str) -> str:
    state = _scan(text)
    return text + "".join(_PAIRS[opener] for opener in reversed(state.stack))


def _escape_interior_quotes(text: str) -> str:
    state = _ScanState()
    out: List[str] = []
    for idx, char in enumerate(text):
        out.append('\\"' if state.advance(text, idx) == "interior-quote" else char)
    return "".join(out)


def repair_json(text: str) -> str:
    """Apply the textual repair pipeline to near-valid JSON output.

    Steps run in a fixed order and never parse: strip code fences, isolate
    the largest object literal, fix mismatched closers, drop trailing
    commas, close a dangling string, drop a truncated trailing member,
    balance brackets innermost first and escape interior quotes. Text
    without any ``{`` is only trimmed. The output is a fixed point:
    repairing it again changes nothing.
    """
    fixed = _strip_code_fences(text)
    if "{" not in fixed:
        return fixed.strip()
    fixed = _isolate_object(fixed)
    fixed = _normalize_closers(fixed)
    fixed = _remove_trailing_commas(fixed)
    fixed = _close_dangling_string(fixed)
    fixed = _strip_incomplete_member(fixed)
    fixed = _balance_brackets(fixed)
    fixed = _escape_interior_quotes(fixed)
    return fixed


def _iter_json_candidates(text: str) -> Tuple[str, List[int]]:
    stripped = _strip_code_fences(text)
    return stripped, [match.start() for match in re.finditer(r"\{", stripped)]


def _try_parse(text: str) -> Tuple[bool, Any, Optional[str]]:
    try:
        return True, json.loads(text, strict=False), None
    except json.JSONDecodeError as exc:
        return False, None, f"{exc.msg} at position {exc.pos}"
    except RecursionError:
        return False, None, "nesting is too deep"
    except ValueError as exc:
        return False, None, str(exc)


def _snippets(raw_text: str) -> Tuple[str, str]:
    flat = raw_text.strip().replace("\n", " ")
    if len(flat) <= SNIPPET_CHARS:
        return flat, ""
    return flat[:SNIPPET_CHARS] + "...", "..." + flat[-SNIPPET_CHARS:]


def extract_json(raw_text: str) -> Any:
    """Parse model output, repairing it when it is not valid JSON as-is.

    Valid JSON is returned exactly as ``json.loads`` would return it. Anything
    else must yield a JSON object after repair, otherwise ``ParseError`` is
    raised with snippets of the original text. Nesting too deep for the
    decoder is reported as ``ParseError`` as well.
    """
    if raw_text is None or not raw_text.strip():
        raise ParseError("Empty response from LLM")

    ok, parsed, _ = _try_parse(raw_text)
    if ok:
        return parsed

    repaired = repair_json(raw_text)
    ok, parsed, reason = _try_parse(repaired)
    if ok and isinstance(parsed, dict):
        if repaired.strip() != raw_text.strip():
            logger.debug("Recovered JSON after repair", extra={"step": "parsing"})
        return parsed

    decoder = json.JSONDecoder(strict=False)
    stripped, starts = _iter_json_candidates(raw_text)
    for start in starts:
        try:
            parsed, _ = decoder.raw_decode(stripped, start)
        except RecursionError:
            # later starts sit inside the same over-deep structure
            reason = "nesting is too deep"
            break
        except ValueError:
            continue
        if isinstance(parsed, dict):
            return parsed

    head, tail = _snippets(raw_text)
    reason = reason or "top-level value is not an object"
    raise ParseError(f"Failed to parse JSON response from LLM ({reason}).", head=head, tail=tail)
