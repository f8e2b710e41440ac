"""Import specifier extraction from JavaScript module sources.

The source is parsed with esprima (JSX enabled). CDN output regularly uses
syntax esprima does not know (optional chaining, class fields, type
annotations), so a parse failure falls back to a token-level scan that skips
strings, template text, comments and regular expressions. Either way only
string-literal sources are reported, so module-system words quoted in error
messages are never mistaken for imports.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Tuple

import esprima

logger = logging.getLogger(__name__)

IGNORED_PREFIXES = ("data:", "blob:", "chrome-extension:")

STATIC = "import"
REEXPORT = "export"
DYNAMIC = "dynamic"


@dataclass(frozen=True)
class ImportRef:
    specifier: str
    kind: str


def _keep(specifier: str) -> bool:
    return bool(specifier.strip()) and not specifier.startswith(IGNORED_PREFIXES) and "${" not in specifier


def _dedupe(refs: List[ImportRef]) -> List[ImportRef]:
    seen = set()
    result = []
    for ref in refs:
        if ref in seen or not _keep(ref.specifier):
            continue
        seen.add(ref)
        result.append(ref)
    return result


# --- esprima ---------------------------------------------------------------

def _string_literal(node) -> Optional[str]:
    if node is None or getattr(node, "type", None) != "Literal":
        return None
    value = getattr(node, "value", None)
    return value if isinstance(value, str) else None


def _parse_with_esprima(source: str) -> List[ImportRef]:
    refs: List[ImportRef] = []

    def delegate(node, _metadata):
        node_type = getattr(node, "type", None)
        if node_type == "ImportDeclaration":
            value = _string_literal(node.source)
            if value is not None:
                refs.append(ImportRef(value, STATIC))
        elif node_type in ("ExportNamedDeclaration", "ExportAllDeclaration"):
            value = _string_literal(getattr(node, "source", None))
            if value is not None:
                refs.append(ImportRef(value, REEXPORT))
        elif node_type == "CallExpression":
            callee = getattr(node, "callee", None)
            arguments = getattr(node, "arguments", None) or []
            if getattr(callee, "type", None) == "Import" and arguments:
                value = _string_literal(arguments[0])
                if value is not None:
                    refs.append(ImportRef(value, DYNAMIC))

    esprima.parseModule(source, {"jsx": True}, delegate)
    return refs


# --- token scan ------------------------------------------------------------

_IDENT = re.compile(r"[A-Za-z_$#\u00c0-\uffff][\w$]*")
_NUMBER = re.compile(r"(?:\d|\.\d)[\w.]*")
_REGEX_PRECEDERS = {
    "return", "typeof", "instanceof", "in", "of", "new", "delete", "void",
    "throw", "case", "do", "else", "yield", "await",
}
_CLAUSE_STOPS = {
    "import", "export", "function", "class", "const", "let", "var",
    "async", "await", "return", "new", "typeof", "enum", "interface",
}
_CLAUSE_PUNCT = {"*", "{", "}", ","}

Token = Tuple[str, str]


def _read_string(source: str, i: int) -> Tuple[str, int]:
    quote = source[i]
    i += 1
    chars = []
    n = len(source)
    while i < n:
        ch = source[i]
        if ch == "\\" and i + 1 < n:
            chars.append(source[i + 1])
            i += 2
            continue
        if ch == quote:
            return "".join(chars), i + 1
        if ch == "\n":
            break
        chars.append(ch)
        i += 1
    return "".join(chars), i


def _read_template(source: str, i: int) -> Tuple[int, bool]:
    """Skip template text from ``i``; returns (position, opened_expression)."""
    n = len(source)
    while i < n:
        ch = source[i]
        if ch == "\\":
            i += 2
            continue
        if ch == "`":
            return i + 1, False
        if ch == "$" and source.startswith("${", i):
            return i + 2, True
        i += 1
    return i, False


def _read_regex(source: str, i: int) -> int:
    n = len(source)
    i += 1
    in_class = False
    while i < n:
        ch = source[i]
        if ch == "\\":
            i += 2
            continue
        if ch == "\n":
            return i
        if in_class:
            if ch == "]":
                in_class = False
        elif ch == "[":
            in_class = True
        elif ch == "/":
            i += 1
            while i < n and (source[i].isalnum() or source[i] == "_"):
                i += 1
            return i
        i += 1
    return i


def _regex_allowed(previous: Optional[Token]) -> bool:
    if previous is None:
        return True
    kind, value = previous
    if kind == "name":
        return value in _REGEX_PRECEDERS
    if kind in ("string", "number", "template", "regex"):
        return False
    return value not in (")", "]", "}")


def tokenize(source: str) -> List[Token]:
    """Split ``source`` into coarse tokens; comments and whitespace are dropped."""
    tokens: List[Token] = []
    template_depths: List[int] = []
    i, n = 0, len(source)
    while i < n:
        ch = source[i]
        if ch.isspace():
            i += 1
            continue
        if source.startswith("//", i):
            end = source.find("\n", i)
            i = n if end == -1 else end
            continue
        if source.startswith("/*", i):
            end = source.find("*/", i + 2)
            i = n if end == -1 else end + 2
            continue
        if ch in ("'", '"'):
            value, i = _read_string(source, i)
            tokens.append(("string", value))
            continue
        if ch == "`":
            i, opened = _read_template(source, i + 1)
            tokens.append(("template", ""))
            if opened:
                template_depths.append(0)
            continue
        if ch == "{" and template_depths:
            template_depths[-1] += 1
        elif ch == "}" and template_depths:
            if template_depths[-1] == 0:
                template_depths.pop()
                i, opened = _read_template(source, i + 1)
                tokens.append(("template", ""))
                if opened:
                    template_depths.append(0)
                continue
            template_depths[-1] -= 1
        if ch == "/" and _regex_allowed(tokens[-1] if tokens else None):
            i = _read_regex(source, i)
            tokens.append(("regex", ""))
            continue
        match = _IDENT.match(source, i)
        if match:
            tokens.append(("name", match.group()))
            i = match.end()
            continue
        match = _NUMBER.match(source, i)
        if match:
            tokens.append(("number", match.group()))
            i = match.end()
            continue
        tokens.append(("punct", ch))
        i += 1
    return tokens


def _scan_tokens(tokens: List[Token]) -> List[ImportRef]:
    refs: List[ImportRef] = []
    count = len(tokens)
    for idx, (kind, value) in enumerate(tokens):
        if kind != "name" or value not in ("import", "export"):
            continue
        if idx and tokens[idx - 1] == ("punct", "."):
            continue
        following = tokens[idx + 1] if idx + 1 < count else None
        if value == "import" and following is not None:
            if following[0] == "string":
                refs.append(ImportRef(following[1], STATIC))
                continue
            if (
                following == ("punct", "(")
                and idx + 3 < count
                and tokens[idx + 2][0] == "string"
                and tokens[idx + 3] in (("punct", ")"), ("punct", ","))
            ):
                refs.append(ImportRef(tokens[idx + 2][1], DYNAMIC))
                continue
        j = idx + 1
        while j < count:
            tok_kind, tok_value = tokens[j]
            if (
                tok_kind == "name"
                and tok_value == "from"
                and j > idx + 1
                and j + 1 < count
                and tokens[j + 1][0] == "string"
            ):
                refs.append(ImportRef(tokens[j + 1][1], STATIC if value == "import" else REEXPORT))
                break
            if tok_kind == "name" and tok_value not in _CLAUSE_STOPS:
                j += 1
                continue
            if tok_kind == "punct" and tok_value in _CLAUSE_PUNCT:
                j += 1
                continue
            break
    return refs


def _scan(source: str) -> List[ImportRef]:
    return _scan_tokens(tokenize(source))


# --- public API ------------------------------------------------------------

def extract_import_refs(source: str) -> List[ImportRef]:
    """Return every string-literal import/re-export/dynamic-import source, in order."""
    try:
        refs = _parse_with_esprima(source)
    except Exception as exc:  # pylint: disable=broad-exception-caught
        logger.debug("esprima could not parse module (%s); using token scan", exc)
        refs = _scan(source)
    return _dedupe(refs)


def specifiers(refs: Iterable[ImportRef]) -> List[str]:
    """Distinct specifiers of ``refs`` in first-seen order."""
    result = []
    for ref in refs:
        if ref.specifier not in result:
            result.append(ref.specifier)
    return result


def extract_imports(source: str) -> List[str]:
    """Specifiers only; see ``extract_import_refs``."""
    return specifiers(extract_import_refs(source))


def has_cdn_reexports(refs: Iterable[ImportRef], is_cdn_url: Callable[[str], bool]) -> bool:
    """True when ``refs`` re-export from a root-relative or CDN-absolute module."""
    return any(
        ref.kind == REEXPORT and (ref.specifier.startswith("/") or is_cdn_url(ref.specifier))
        for ref in refs
    )
