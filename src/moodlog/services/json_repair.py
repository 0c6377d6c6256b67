"""Best-effort repair of malformed JSON produced by language models.

``parse_json_object`` is the only entry point the pipeline uses: strict parse
first, then one repair pass and one retry. It never raises; anything that
cannot be turned into a JSON object becomes ``{}``.

The repairer is a single forward scan that re-emits the first top-level
object or array while fixing what models commonly get wrong:

- trailing and missing commas
- unquoted keys, single-quoted and smart-quoted strings
- Python/JavaScript literals (True, None, undefined, NaN)
- comments and stray characters between tokens
- raw control characters and invalid escapes inside strings
- truncation: unterminated strings, dangling keys, unclosed brackets
"""

import json
import re
from typing import Any, Dict, List, Optional

from moodlog.utils.logging import get_logger


logger = get_logger(__name__)

_NUMBER = re.compile(r"-?(?:0|[1-9]\d*)(?:\.\d+)?(?:[eE][+-]?\d+)?")
_HEX4 = re.compile(r"[0-9a-fA-F]{4}")

_LITERALS = {
    "true": "true",
    "True": "true",
    "false": "false",
    "False": "false",
    "null": "null",
    "None": "null",
    "undefined": "null",
    "NaN": "null",
    "Infinity": "null",
}

# opening quote -> characters that may close it
_QUOTE_CLOSERS = {
    '"': '"',
    "'": "'",
    "“": "”\"",
    "”": "”\"",
    "‘": "’'",
    "’": "’'",
}

_CONTROL_ESCAPES = {
    "\n": "\\n",
    "\r": "\\r",
    "\t": "\\t",
    "\b": "\\b",
    "\f": "\\f",
}

class _NonStandardConstant(ValueError):
    pass


def _reject_constant(name: str) -> Any:
    raise _NonStandardConstant(f"{name} is not valid JSON")


def _loads(text: str) -> Any:
    """json.loads that rejects NaN and Infinity instead of returning floats."""
    return json.loads(text, parse_constant=_reject_constant)


_DIGITS = "0123456789"
_COMMAS = ",，"
_COLONS = ":："
_VALUE_END = ",}]，"


class _Frame:
    __slots__ = ("kind", "state", "count")

    def __init__(self, kind: str):
        self.kind = kind
        # objects: key -> colon -> value -> key ...; arrays: always value
        self.state = "key" if kind == "{" else "value"
        self.count = 0


class _JSONRepairer:
    def __init__(self, text: str):
        self.text = text
        self.length = len(text)
        self.pos = 0
        self.out: List[str] = []
        self.stack: List[_Frame] = []
        self.fixes: set = set()

    def run(self) -> str:
        starts = [i for i in (self.text.find("{"), self.text.find("[")) if i != -1]
        if not starts:
            return self.text
        self.pos = min(starts)

        while self.pos < self.length:
            ch = self.text[self.pos]

            if ch in "{[":
                self._open(ch)
            elif ch in "}]":
                self._close(ch)
                if not self.stack:
                    break
            elif ch in _COMMAS:
                self._comma()
            elif ch in _COLONS:
                self._colon()
            elif ch in _QUOTE_CLOSERS:
                literal = self._read_string()
                self._emit_scalar(literal, literal)
            elif ch == "/" and self._peek(1) in ("/", "*"):
                self._skip_comment()
            elif ch == "-" or ch in _DIGITS or (ch == "." and self._peek(1) and self._peek(1) in _DIGITS):
                self._read_number()
            elif ch.isalpha() or ch in "_$":
                self._read_word()
            else:
                if not ch.isspace():
                    self.fixes.add("stray_characters")
                self.pos += 1

        if self.stack:
            self.fixes.add("unclosed_containers")
        while self.stack:
            self._close_frame()

        return "".join(self.out)

    def _peek(self, offset: int) -> str:
        index = self.pos + offset
        return self.text[index] if index < self.length else ""

    def _top(self) -> Optional[_Frame]:
        return self.stack[-1] if self.stack else None

    def _in_key_position(self) -> bool:
        frame = self._top()
        return frame is not None and frame.kind == "{" and frame.state == "key"

    def _prepare_value(self) -> bool:
        frame = self._top()
        if frame is None:
            return True
        if frame.kind == "[":
            if frame.count:
                self.out.append(",")
            return True
        if frame.state == "colon":
            self.fixes.add("missing_colon")
            self.out.append(":")
            frame.state = "value"
        return frame.state == "value"

    def _after_value(self) -> None:
        frame = self._top()
        if frame is None:
            return
        frame.count += 1
        if frame.kind == "{":
            frame.state = "key"

    def _emit_key(self, literal: str) -> None:
        frame = self._top()
        if frame.count:
            self.out.append(",")
        self.out.append(literal)
        frame.state = "colon"

    def _emit_scalar(self, literal: str, key_literal: str) -> None:
        if self._in_key_position():
            self._emit_key(key_literal)
            return
        if self._prepare_value():
            self.out.append(literal)
            self._after_value()

    def _open(self, ch: str) -> None:
        self.pos += 1
        if self._in_key_position():
            self.fixes.add("stray_characters")
            return
        self._prepare_value()
        self.out.append(ch)
        self.stack.append(_Frame(ch))

    def _close(self, ch: str) -> None:
        self.pos += 1
        opener = "{" if ch == "}" else "["
        if not any(frame.kind == opener for frame in self.stack):
            self.fixes.add("stray_characters")
            return
        while self.stack:
            kind = self.stack[-1].kind
            if kind != opener:
                self.fixes.add("mismatched_brackets")
            self._close_frame()
            if kind == opener:
                break

    def _close_frame(self) -> None:
        frame = self.stack.pop()
        if frame.kind == "{":
            if frame.state == "colon":
                self.fixes.add("dangling_key")
                self.out.append(":null")
            elif frame.state == "value":
                self.fixes.add("dangling_key")
                self.out.append("null")
            self.out.append("}")
        else:
            self.out.append("]")
        self._after_value()

    def _comma(self) -> None:
        self.pos += 1
        frame = self._top()
        if frame is None or frame.kind != "{":
            return
        if frame.state == "colon":
            self.fixes.add("dangling_key")
            self.out.append(":null")
            self._after_value()
        elif frame.state == "value":
            self.fixes.add("dangling_key")
            self.out.append("null")
            self._after_value()

    def _colon(self) -> None:
        self.pos += 1
        frame = self._top()
        if frame is not None and frame.kind == "{" and frame.state == "colon":
            self.out.append(":")
            frame.state = "value"
        else:
            self.fixes.add("stray_characters")

    def _skip_comment(self) -> None:
        self.fixes.add("comments")
        if self._peek(1) == "/":
            end = self.text.find("\n", self.pos)
            self.pos = self.length if end == -1 else end + 1
        else:
            end = self.text.find("*/", self.pos + 2)
            self.pos = self.length if end == -1 else end + 2

    def _read_string(self) -> str:
        opener = self.text[self.pos]
        closers = _QUOTE_CLOSERS[opener]
        if opener != '"':
            self.fixes.add("quotes")
        self.pos += 1
        parts: List[str] = []

        while self.pos < self.length:
            ch = self.text[self.pos]

            if ch == "\\":
                nxt = self._peek(1)
                if nxt == "":
                    self.pos += 1
                    break
                if nxt in '"\\/bfnrt':
                    parts.append("\\" + nxt)
                    self.pos += 2
                elif nxt == "u" and _HEX4.fullmatch(self.text[self.pos + 2:self.pos + 6]):
                    parts.append(self.text[self.pos:self.pos + 6])
                    self.pos += 6
                elif nxt == "'":
                    parts.append("'")
                    self.pos += 2
                else:
                    self.fixes.add("invalid_escape")
                    parts.append("\\\\")
                    self.pos += 1
                continue

            if ch in closers and self._is_string_end(self.pos + 1):
                self.pos += 1
                return '"' + "".join(parts) + '"'

            if ch == '"':
                self.fixes.add("unescaped_quote")
                parts.append('\\"')
            elif ch < " ":
                self.fixes.add("control_characters")
                parts.append(_CONTROL_ESCAPES.get(ch) or "\\u%04x" % ord(ch))
            else:
                parts.append(ch)
            self.pos += 1

        self.fixes.add("unterminated_string")
        return '"' + "".join(parts) + '"'

    def _is_string_end(self, index: int) -> bool:
        # A quote closes the string only where JSON syntax can continue
        saw_newline = False
        while index < self.length and self.text[index].isspace():
            saw_newline = saw_newline or self.text[index] in "\r\n"
            index += 1
        if index >= self.length:
            return True
        nxt = self.text[index]
        if nxt in _VALUE_END or nxt in _COLONS or nxt == "/":
            return True
        if nxt not in _QUOTE_CLOSERS:
            return False
        # Missing comma: the next string on the line is the following key
        return saw_newline or self._is_key_at(index)

    def _is_key_at(self, index: int) -> bool:
        closers = _QUOTE_CLOSERS[self.text[index]]
        index += 1
        while index < self.length:
            ch = self.text[index]
            if ch in "\r\n":
                return False
            if ch == "\\":
                index += 2
                continue
            if ch in closers:
                break
            index += 1
        else:
            return False

        index += 1
        while index < self.length and self.text[index] in " \t":
            index += 1
        return index < self.length and self.text[index] in _COLONS

    def _read_number(self) -> None:
        start = self.pos
        if self.text.startswith("-Infinity", self.pos):
            self.pos += len("-Infinity")
            self.fixes.add("literals")
            self._emit_scalar("null", json.dumps("-Infinity"))
            return

        while self.pos < self.length and self.text[self.pos] in "0123456789+-.eE":
            self.pos += 1
        token = self.text[start:self.pos]

        if _NUMBER.fullmatch(token):
            literal = token
        else:
            self.fixes.add("numbers")
            try:
                literal = json.dumps(int(token))
            except ValueError:
                try:
                    literal = json.dumps(float(token))
                except ValueError:
                    literal = json.dumps(token)

        self._emit_scalar(literal, json.dumps(token))

    def _read_word(self) -> None:
        start = self.pos
        while self.pos < self.length and (self.text[self.pos].isalnum() or self.text[self.pos] in "_$-"):
            self.pos += 1
        word = self.text[start:self.pos]

        if self._in_key_position():
            self.fixes.add("unquoted_keys")
            self._emit_key(json.dumps(word))
            return

        if word in _LITERALS:
            if _LITERALS[word] != word:
                self.fixes.add("literals")
            self._emit_scalar(_LITERALS[word], json.dumps(word))
            return

        # Bare text value: take everything up to the next delimiter
        while self.pos < self.length and self.text[self.pos] not in _VALUE_END + "\n":
            self.pos += 1
        self.fixes.add("unquoted_values")
        self._emit_scalar(json.dumps(self.text[start:self.pos].strip()), json.dumps(word))


def repair_json(text: str) -> str:
    """
    Rewrite malformed JSON text into parseable JSON.

    Valid JSON is returned unchanged. Otherwise the first top-level object or
    array is re-emitted with common model mistakes fixed; text before it and
    after it is dropped.

    Args:
        text: Candidate JSON text

    Returns:
        Repaired JSON text (not guaranteed parseable for hopeless input)

    Example:
        >>> repair_json("{'a': 1, b: [True, None,],}")
        '{"a":1,"b":[true,null]}'
    """
    try:
        _loads(text)
        return text
    except (json.JSONDecodeError, _NonStandardConstant):
        pass

    repairer = _JSONRepairer(text)
    repaired = repairer.run()
    if repairer.fixes:
        logger.debug("json_repair_applied", fixes=sorted(repairer.fixes))
    return repaired


def parse_json_object(candidate: str, request_id: str = "unknown") -> Dict[str, Any]:
    """
    Parse a candidate into a JSON object, repairing it once if needed.

    Never raises: a candidate that cannot be turned into a JSON object yields
    an empty dict, which callers treat exactly like "no JSON found".

    Args:
        candidate: Text believed to contain one JSON object
        request_id: Identifier for logging

    Returns:
        Parsed object, or {} on failure
    """
    try:
        parsed = _loads(candidate)
    except (json.JSONDecodeError, _NonStandardConstant) as e:
        logger.info(
            "json_strict_parse_failed",
            request_id=request_id,
            error=str(e),
        )
        try:
            parsed = _loads(repair_json(candidate))
        except (json.JSONDecodeError, _NonStandardConstant, RecursionError) as repair_error:
            logger.warning(
                "json_repair_failed",
                request_id=request_id,
                candidate=candidate[:500],
                error=str(repair_error),
            )
            return {}
        logger.info("json_repair_succeeded", request_id=request_id)
    except RecursionError:
        logger.warning("json_too_deeply_nested", request_id=request_id)
        return {}

    if not isinstance(parsed, dict):
        logger.warning(
            "json_not_object",
            request_id=request_id,
            parsed_type=type(parsed).__name__,
        )
        return {}

    return parsed
