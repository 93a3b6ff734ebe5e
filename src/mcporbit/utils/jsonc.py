# ABOUTME: Minimal JSON-with-comments reader and path editor
# ABOUTME: Edits splice only the targeted value so comments elsewhere survive
import json
from dataclasses import dataclass
from typing import Any, Sequence

INDENT_UNIT = "  "


class JsoncError(ValueError):
    """Raised when text is not a JSONC document we can edit."""


def strip_comments(text: str) -> str:
    """Strip // and /* */ comments and trailing commas.

    ABOUTME: State machine tracks strings so URLs like https:// survive
    """
    result: list[str] = []
    i = 0
    length = len(text)
    in_string = False
    escape = False

    while i < length:
        ch = text[i]

        if in_string:
            result.append(ch)
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
            i += 1
            continue

        if ch == '"':
            in_string = True
            result.append(ch)
            i += 1
            continue

        if ch == "/" and i + 1 < length and text[i + 1] == "/":
            i += 2
            while i < length and text[i] != "\n":
                i += 1
            continue

        if ch == "/" and i + 1 < length and text[i + 1] == "*":
            i += 2
            while i + 1 < length and not (text[i] == "*" and text[i + 1] == "/"):
                i += 1
            i += 2
            continue

        if ch == ",":
            j = i + 1
            while j < length and text[j] in " \t\r\n":
                j += 1
            if j < length and text[j] in "}]":
                i += 1
                continue

        result.append(ch)
        i += 1

    return "".join(result)


def loads(text: str) -> Any:
    """Parse JSONC text.

    Raises:
        ValueError: If the text is not valid JSON after comment removal
    """
    return json.loads(strip_comments(text))


def dumps(value: Any) -> str:
    return json.dumps(value, indent=2, ensure_ascii=False) + "\n"


@dataclass(frozen=True)
class _Member:
    key: str
    key_start: int
    value_start: int
    value_end: int
    comma: int | None


def _skip_trivia(text: str, i: int) -> int:
    length = len(text)
    while i < length:
        ch = text[i]
        if ch in " \t\r\n":
            i += 1
        elif text.startswith("//", i):
            while i < length and text[i] != "\n":
                i += 1
        elif text.startswith("/*", i):
            end = text.find("*/", i + 2)
            i = length if end == -1 else end + 2
        else:
            break
    return i


def _scan_string(text: str, i: int) -> int:
    i += 1
    length = len(text)
    while i < length:
        ch = text[i]
        if ch == "\\":
            i += 2
            continue
        if ch == '"':
            return i + 1
        i += 1
    raise JsoncError("Unterminated string")


def _scan_value(text: str, i: int) -> int:
    length = len(text)
    if i >= length:
        raise JsoncError("Unexpected end of document")
    ch = text[i]
    if ch == '"':
        return _scan_string(text, i)
    if ch in "{[":
        depth = 0
        while i < length:
            ch = text[i]
            if ch == '"':
                i = _scan_string(text, i)
                continue
            if text.startswith("//", i) or text.startswith("/*", i):
                i = _skip_trivia(text, i)
                continue
            if ch in "{[":
                depth += 1
            elif ch in "}]":
                depth -= 1
                if depth == 0:
                    return i + 1
            i += 1
        raise JsoncError("Unbalanced brackets")
    start = i
    while i < length and text[i] not in ",}] \t\r\n/":
        i += 1
    if i == start:
        raise JsoncError(f"Unexpected character {ch!r} at offset {start}")
    return i


def _members(text: str, obj_start: int) -> tuple[list[_Member], int]:
    """List the members of the object opening at obj_start.

    Returns:
        (members, index of the closing brace)
    """
    members: list[_Member] = []
    i = _skip_trivia(text, obj_start + 1)
    while True:
        if i >= len(text):
            raise JsoncError("Unterminated object")
        if text[i] == "}":
            return members, i
        if text[i] != '"':
            raise JsoncError(f"Expected property name at offset {i}")
        key_end = _scan_string(text, i)
        key = json.loads(text[i:key_end])
        colon = _skip_trivia(text, key_end)
        if colon >= len(text) or text[colon] != ":":
            raise JsoncError(f"Expected ':' at offset {colon}")
        value_start = _skip_trivia(text, colon + 1)
        value_end = _scan_value(text, value_start)
        after = _skip_trivia(text, value_end)
        comma = None
        if after < len(text) and text[after] == ",":
            comma = after
            after = _skip_trivia(text, after + 1)
        members.append(_Member(key, i, value_start, value_end, comma))
        i = after


def _root(text: str) -> int:
    i = _skip_trivia(text, 0)
    if i >= len(text) or text[i] != "{":
        raise JsoncError("Document root is not an object")
    return i


def _line_indent(text: str, pos: int) -> str | None:
    """Whitespace before pos on its line, or None if other text precedes it."""
    line_start = text.rfind("\n", 0, pos) + 1
    prefix = text[line_start:pos]
    return prefix if prefix.strip() == "" else None


def _render(value: Any, indent: str) -> str:
    return json.dumps(value, indent=2, ensure_ascii=False).replace("\n", "\n" + indent)


def _nest(path: Sequence[str], value: Any) -> Any:
    for key in reversed(path):
        value = {key: value}
    return value


def _set_in_object(text: str, obj_start: int, path: Sequence[str], value: Any) -> str:
    members, close = _members(text, obj_start)
    key, rest = path[0], path[1:]

    matches = [m for m in members if m.key == key]
    if matches:
        member = matches[-1]
        if rest and text[member.value_start] == "{":
            return _set_in_object(text, member.value_start, rest, value)
        indent = _line_indent(text, member.key_start) or ""
        rendered = _render(_nest(rest, value), indent)
        return text[:member.value_start] + rendered + text[member.value_end:]

    close_indent = _line_indent(text, close)
    if close_indent is None:
        close_indent = _line_indent(text, obj_start) or ""
    if members:
        member_indent = _line_indent(text, members[0].key_start)
    else:
        member_indent = close_indent + INDENT_UNIT
    rendered = _render(_nest(rest, value), member_indent or "")
    entry = f"{json.dumps(key, ensure_ascii=False)}: {rendered}"

    if not members:
        block = "{\n" + member_indent + entry + "\n" + close_indent + "}"
        return text[:obj_start] + block + text[close + 1:]

    last = members[-1]
    if member_indent is None:
        # Single-line object: keep it on one line
        if last.comma is not None:
            return text[:last.comma + 1] + " " + entry + text[last.comma + 1:]
        return text[:last.value_end] + ", " + entry + text[last.value_end:]
    if last.comma is not None:
        return text[:last.comma + 1] + "\n" + member_indent + entry + text[last.comma + 1:]
    return text[:last.value_end] + ",\n" + member_indent + entry + text[last.value_end:]


def set_value(text: str, path: Sequence[str], value: Any) -> str:
    """Set the value at a key path, creating intermediate objects.

    ABOUTME: Replaces only the value span; everything else is kept verbatim

    Args:
        text: JSONC document (empty text is treated as {})
        path: Non-empty sequence of object keys
        value: JSON-serializable value

    Raises:
        JsoncError: If the document cannot be edited structurally
    """
    if not path:
        raise JsoncError("Empty key path")
    if not text.strip():
        return dumps(_nest(path, value))
    return _set_in_object(text, _root(text), path, value)


def remove_value(text: str, path: Sequence[str]) -> str:
    """Remove the member at a key path; missing paths leave text unchanged."""
    if not path or not text.strip():
        return text
    obj_start = _root(text)
    for depth, key in enumerate(path):
        members, _ = _members(text, obj_start)
        matches = [m for m in members if m.key == key]
        if not matches:
            return text
        member = matches[-1]
        if depth < len(path) - 1:
            if text[member.value_start] != "{":
                return text
            obj_start = member.value_start
            continue

        index = members.index(member)
        if member.comma is not None:
            end = member.comma + 1
            while end < len(text) and text[end] in " \t\r\n":
                end += 1
            return text[:member.key_start] + text[end:]
        if index > 0:
            previous = members[index - 1]
            return text[:previous.comma] + text[member.value_end:]
        return text[:obj_start + 1] + text[member.value_end:]
    return text
