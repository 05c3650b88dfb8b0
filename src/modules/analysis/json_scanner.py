"""String-aware scanning primitives for JSON-like model output.

Every helper here treats a double quote as the start or end of a string
literal and a backslash inside a string as escaping the next character.
Structural characters that appear inside strings are never counted.
"""

import re
from typing import Iterator

OPENERS = {"{": "}", "[": "]"}
CLOSERS = {"}": "{", "]": "["}

_FENCED_BLOCK_RE = re.compile(r"```(?:json)?\s*(.*?)\s*```", re.DOTALL | re.IGNORECASE)
_FENCE_MARKER_RE = re.compile(r"```(?:json)?", re.IGNORECASE)

_CONTROL_ESCAPES = {
    "\n": "\\n",
    "\r": "\\r",
    "\t": "\\t",
    "\b": "\\b",
    "\f": "\\f",
}


def scan(text: str, start: int = 0) -> Iterator[tuple[int, str, bool]]:
    """Yield ``(index, char, inside_string)`` for each character from ``start``.

    ``inside_string`` is True for string content, including escape
    sequences, and False for everything else, including the delimiting
    quotes themselves.
    """
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if not in_string:
            if char == '"':
                in_string = True
            yield index, char, False
            continue

        if escaped:
            escaped = False
        elif char == "\\":
            escaped = True
        elif char == '"':
            in_string = False
            yield index, char, False
            continue
        yield index, char, True


def match_balanced(
    text: str, open_char: str = "{", close_char: str = "}", start: int = 0
) -> int:
    """Return the index of the closer matching the opener at ``start``.

    Returns -1 when the structure is never closed.
    """
    depth = 0
    for index, char, inside in scan(text, start):
        if inside:
            continue
        if char == open_char:
            depth += 1
        elif char == close_char:
            depth -= 1
            if depth == 0:
                return index
    return -1


def root_opener(text: str) -> int:
    """Index where the root JSON value starts, or -1.

    The root is the first ``{``. An array is the root only when the text
    itself starts with ``[`` or holds no object at all, so bracketed prose
    such as citation markers is never mistaken for the answer.
    """
    stripped = text.lstrip()
    if stripped.startswith("["):
        return len(text) - len(stripped)
    brace = text.find("{")
    return brace if brace != -1 else text.find("[")


def find_json_span(text: str) -> tuple[int, int] | None:
    """Locate the root JSON object or array in ``text``.

    Returns ``(start, end)`` where ``end`` is the inclusive index of the
    matching closer, or -1 if the structure is truncated. Returns None when
    there is no opener at all.
    """
    start = root_opener(text)
    if start == -1:
        return None
    opener = text[start]
    return start, match_balanced(text, opener, OPENERS[opener], start)


def count_unbalanced(text: str, open_char: str, close_char: str) -> int:
    """Net number of ``open_char`` without a matching ``close_char``."""
    net = 0
    for _, char, inside in scan(text):
        if inside:
            continue
        if char == open_char:
            net += 1
        elif char == close_char:
            net -= 1
    return max(net, 0)


def closing_sequence(text: str) -> str:
    """Closers needed to terminate every open object and array, innermost first."""
    stack: list[str] = []
    for _, char, inside in scan(text):
        if inside:
            continue
        if char in OPENERS:
            stack.append(char)
        elif char in CLOSERS and stack and stack[-1] == CLOSERS[char]:
            stack.pop()
    return "".join(OPENERS[opener] for opener in reversed(stack))


def has_unterminated_string(text: str) -> bool:
    """True when an odd number of unescaped quotes leaves a string open."""
    delimiters = sum(1 for _, char, inside in scan(text) if char == '"' and not inside)
    return delimiters % 2 == 1


def ends_with_dangling_escape(text: str) -> bool:
    """True when ``text`` ends in an unpaired backslash."""
    trailing = len(text) - len(text.rstrip("\\"))
    return trailing % 2 == 1


def escape_control_chars_in_strings(text: str) -> str:
    """Rewrite raw control characters inside strings as JSON escapes."""
    out = []
    for _, char, inside in scan(text):
        if inside and ord(char) < 0x20:
            out.append(_CONTROL_ESCAPES.get(char, f"\\u{ord(char):04x}"))
        else:
            out.append(char)
    return "".join(out)


def escape_interior_quotes(text: str) -> str:
    """Escape quotes that cannot be closing a string.

    A quote inside a string counts as closing only when the next
    non-whitespace character is ``:``, ``,``, ``}``, ``]`` or the end of
    input. Any other quote is escaped and the string stays open.
    """
    out = []
    in_string = False
    escaped = False
    length = len(text)
    for index, char in enumerate(text):
        if not in_string:
            if char == '"':
                in_string = True
            out.append(char)
            continue

        if escaped:
            escaped = False
        elif char == "\\":
            escaped = True
        elif char == '"':
            lookahead = index + 1
            while lookahead < length and text[lookahead].isspace():
                lookahead += 1
            if lookahead < length and text[lookahead] not in ":,}]":
                out.append('\\"')
                continue
            in_string = False
        out.append(char)
    return "".join(out)


def remove_trailing_commas(text: str) -> str:
    """Drop commas that directly precede a closing brace or bracket."""
    length = len(text)
    dropped = set()
    for index, char, inside in scan(text):
        if inside or char != ",":
            continue
        lookahead = index + 1
        while lookahead < length and text[lookahead].isspace():
            lookahead += 1
        if lookahead < length and text[lookahead] in CLOSERS:
            dropped.add(index)
    if not dropped:
        return text
    return "".join(char for index, char in enumerate(text) if index not in dropped)


def strip_comments(text: str) -> str:
    """Remove ``//`` line comments and ``/* */`` block comments outside strings."""
    out = []
    length = len(text)
    index = 0
    in_string = False
    escaped = False
    while index < length:
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
        elif char == '"':
            in_string = True
        elif text.startswith("//", index):
            newline = text.find("\n", index)
            index = length if newline == -1 else newline
            continue
        elif text.startswith("/*", index):
            end = text.find("*/", index + 2)
            index = length if end == -1 else end + 2
            continue
        out.append(char)
        index += 1
    return "".join(out)


def strip_code_fences(text: str) -> str:
    """Remove markdown code fence markers such as ```` ```json ```` and ```` ``` ````."""
    return _FENCE_MARKER_RE.sub("", text).strip()


def extract_fenced_block(text: str) -> str | None:
    """Contents of the first complete fenced code block, if any."""
    match = _FENCED_BLOCK_RE.search(text)
    if not match:
        return None
    return match.group(1).strip()
