"""URL pattern matching used to pick a backend for a source URL.

A backend declares the URLs it handles as a list of patterns, using the
WHATWG URLPattern syntax (the subset backends actually need):

* a mapping of URL components, e.g.
  ``{"hostname": "api.github.com", "pathname": "/:apiCall(.+)"}``; components
  that are left out match anything;
* or a pattern string, e.g.
  ``"http{s}?://raw.githubusercontent.com/:owner/:repo/:branch/:path(.+)"``.

Component syntax:

========================  ================================================
``:name``                 one segment (``[^/]+?`` in ``pathname``,
                          ``[^.]+?`` in ``hostname``, ``.+?`` elsewhere)
``:name(regex)``          named group with a custom regex
``(regex)`` / ``*``       anonymous groups, reported as ``"0"``, ``"1"``...
``{...}``                 non-capturing group
``?`` ``*`` ``+``         modifiers after a param, wildcard or group
``\\x``                   literal ``x``
========================  ================================================

In ``pathname`` an optional or repeated param directly after ``/`` takes the
slash with it, so ``/:owner/:gist?`` matches ``/foo`` as well as ``/foo/bar``.

Compiled patterns are memoized by :func:`compile_pattern`.
"""

from __future__ import annotations

import functools
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional, Union
from urllib.parse import urlsplit

COMPONENTS = (
    "protocol",
    "username",
    "password",
    "hostname",
    "port",
    "pathname",
    "search",
    "hash",
)

_CASE_INSENSITIVE = {"protocol", "hostname"}
_SPECIAL_SCHEMES = {"http", "https", "ws", "wss", "ftp", "file"}
_NAME_CHARS = re.compile(r"[A-Za-z0-9_]")

PatternSpec = Union[str, Mapping[str, str], "URLPattern"]


# --- Pattern compilation ---


def _segment_regex(component: str) -> str:
    if component == "pathname":
        return r"[^/]+?"
    if component == "hostname":
        return r"[^.]+?"
    return r".+?"


def _read_regex(source: str, i: int) -> tuple[str, int]:
    """Read a balanced ``(...)`` group starting at ``source[i] == "("``."""
    depth = 0
    start = i + 1
    while i < len(source):
        char = source[i]
        if char == "\\":
            i += 2
            continue
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth == 0:
                return source[start:i], i + 1
        i += 1
    raise ValueError(f"Unbalanced parenthesis in URL pattern: {source!r}")


def _tokenize(source: str, i: int = 0, closing: str | None = None) -> tuple[list[tuple], int]:
    """Split a component pattern into literal, param and group tokens."""
    tokens: list[tuple] = []
    literal = ""

    def flush() -> None:
        nonlocal literal
        if literal:
            tokens.append(("literal", literal))
            literal = ""

    def modifier_at(j: int) -> tuple[str, int]:
        if j < len(source) and source[j] in "?*+":
            return source[j], j + 1
        return "", j

    while i < len(source):
        char = source[i]

        if closing is not None and char == closing:
            flush()
            return tokens, i + 1

        if char == "\\" and i + 1 < len(source):
            literal += source[i + 1]
            i += 2
        elif char == "{":
            flush()
            inner, i = _tokenize(source, i + 1, "}")
            modifier, i = modifier_at(i)
            tokens.append(("group", inner, modifier))
        elif char == ":" and i + 1 < len(source) and _NAME_CHARS.match(source[i + 1]):
            flush()
            j = i + 1
            while j < len(source) and _NAME_CHARS.match(source[j]):
                j += 1
            name = source[i + 1 : j]
            regex = None
            if j < len(source) and source[j] == "(":
                regex, j = _read_regex(source, j)
            modifier, i = modifier_at(j)
            tokens.append(("param", name, regex, modifier))
        elif char == "(":
            flush()
            regex, j = _read_regex(source, i)
            modifier, i = modifier_at(j)
            tokens.append(("param", None, regex, modifier))
        elif char == "*":
            flush()
            modifier, i = modifier_at(i + 1)
            tokens.append(("param", None, ".*", modifier))
        else:
            literal += char
            i += 1

    if closing is not None:
        raise ValueError(f"Unclosed '{{' in URL pattern: {source!r}")
    flush()
    return tokens, i


class _Builder:
    """Turns tokens into a Python regex, tracking group names."""

    def __init__(self, component: str) -> None:
        self.component = component
        self.names: dict[str, str] = {}
        self._anonymous = 0

    def _group_name(self, name: Optional[str]) -> str:
        if name is None:
            key = str(self._anonymous)
            self._anonymous += 1
            group = f"_anon{key}"
        else:
            key = name
            group = name
        self.names[group] = key
        return group

    def build(self, tokens: list[tuple]) -> str:
        parts: list[str] = []
        for index, token in enumerate(tokens):
            kind = token[0]
            if kind == "literal":
                text = token[1]
                following = tokens[index + 1] if index + 1 < len(tokens) else None
                if (
                    self.component == "pathname"
                    and text.endswith("/")
                    and following is not None
                    and following[0] == "param"
                    and following[3] in ("?", "*")
                ):
                    # The slash becomes the param's prefix
                    text = text[:-1]
                parts.append(re.escape(text))
            elif kind == "group":
                _, inner, modifier = token
                parts.append(f"(?:{self.build(inner)}){modifier}")
            else:
                _, name, regex, modifier = token
                previous = tokens[index - 1] if index > 0 else None
                prefix = ""
                if (
                    self.component == "pathname"
                    and previous is not None
                    and previous[0] == "literal"
                    and previous[1].endswith("/")
                    and modifier in ("?", "*")
                ):
                    prefix = "/"
                parts.append(self._param(name, regex, modifier, prefix))
        return "".join(parts)

    def _param(self, name: Optional[str], regex: Optional[str], modifier: str, prefix: str) -> str:
        body = regex if regex is not None else _segment_regex(self.component)
        group = self._group_name(name)
        escaped_prefix = re.escape(prefix)

        if modifier in ("*", "+"):
            repeated = f"(?P<{group}>(?:{body})(?:{escaped_prefix}(?:{body}))*)"
            if modifier == "*":
                return f"(?:{escaped_prefix}{repeated})?"
            return f"{escaped_prefix}{repeated}"

        captured = f"{escaped_prefix}(?P<{group}>{body})"
        if modifier == "?":
            return f"(?:{captured})?"
        return captured


@dataclass(frozen=True)
class _CompiledComponent:
    regex: re.Pattern[str]
    names: dict[str, str]


def _compile_component(component: str, source: str) -> _CompiledComponent:
    tokens, _ = _tokenize(source)
    builder = _Builder(component)
    body = builder.build(tokens)
    flags = re.DOTALL
    if component in _CASE_INSENSITIVE:
        flags |= re.IGNORECASE
    return _CompiledComponent(re.compile(body, flags), dict(builder.names))


def _split_pattern_string(pattern: str) -> dict[str, str]:
    """Split a full URL pattern string into its component patterns.

    ``search`` and ``hash`` are left out (i.e. wildcards) unless present.
    """
    depth = 0
    scheme_end = -1
    for i, char in enumerate(pattern):
        if char in "({":
            depth += 1
        elif char in ")}":
            depth -= 1
        elif depth == 0 and pattern.startswith("://", i):
            scheme_end = i
            break
    if scheme_end < 0:
        raise ValueError(f"URL pattern must be absolute: {pattern!r}")

    components: dict[str, str] = {"protocol": pattern[:scheme_end]}
    rest = pattern[scheme_end + 3 :]

    # Walk the remainder splitting at top-level "/", "?" and "#"
    current = "hostname"
    buffers: dict[str, str] = {"hostname": ""}
    depth = 0
    i = 0
    while i < len(rest):
        char = rest[i]
        if char == "\\" and i + 1 < len(rest):
            buffers[current] += rest[i : i + 2]
            i += 2
            continue
        if char in "({":
            depth += 1
        elif char in ")}":
            depth -= 1
        elif depth == 0:
            if char == "/" and current == "hostname":
                current = "pathname"
                buffers[current] = ""
            elif char == "?" and current in ("hostname", "pathname") and not _is_modifier(
                buffers[current]
            ):
                current = "search"
                buffers[current] = ""
                i += 1
                continue
            elif char == "#" and current != "hash":
                current = "hash"
                buffers[current] = ""
                i += 1
                continue
        buffers[current] += char
        i += 1

    host = buffers.pop("hostname")
    port_match = re.match(r"^(.*):(\d+)$", host)
    if port_match:
        host, components["port"] = port_match.group(1), port_match.group(2)
    components["hostname"] = host
    components["pathname"] = buffers.pop("pathname", "/")
    components.update(buffers)
    return components


def _is_modifier(preceding: str) -> bool:
    """Whether a ``?`` following *preceding* is a modifier rather than the search delimiter."""
    if not preceding:
        return False
    if preceding[-1] in ")}*":
        return True
    match = re.search(r":[A-Za-z_][A-Za-z0-9_]*$", preceding)
    return match is not None


def _url_components(url: str) -> Optional[dict[str, str]]:
    """Decompose *url* into URLPattern components, or ``None`` if it is not an absolute URL."""
    try:
        parts = urlsplit(url)
        port = parts.port
    except ValueError:
        return None
    if not parts.scheme:
        return None

    scheme = parts.scheme.lower()
    pathname = parts.path
    if not pathname and scheme in _SPECIAL_SCHEMES:
        pathname = "/"

    return {
        "protocol": scheme,
        "username": parts.username or "",
        "password": parts.password or "",
        "hostname": (parts.hostname or "").lower(),
        "port": str(port) if port is not None else "",
        "pathname": pathname,
        "search": parts.query,
        "hash": parts.fragment,
    }


# --- Public API ---


@dataclass
class URLMatch:
    """Result of matching a URL against a :class:`URLPattern`.

    Attributes:
        input: The URL that was matched.
        components: Per-component group values (including anonymous groups).
        groups: Named groups of all components, flattened. Optional groups
            that did not participate are ``None``.
    """

    input: str
    components: dict[str, dict[str, Optional[str]]] = field(default_factory=dict)
    groups: dict[str, Optional[str]] = field(default_factory=dict)


class URLPattern:
    """A compiled URL pattern.

    Args:
        pattern: A pattern string or a mapping of component patterns.

    Raises:
        ValueError: If the pattern is malformed.
    """

    def __init__(self, pattern: Union[str, Mapping[str, str]]) -> None:
        if isinstance(pattern, str):
            spec = _split_pattern_string(pattern)
        else:
            unknown = set(pattern) - set(COMPONENTS)
            if unknown:
                raise ValueError(f"Unknown URL pattern components: {sorted(unknown)}")
            spec = dict(pattern)

        self.source = pattern
        self._components = {
            name: _compile_component(name, spec[name])
            for name in COMPONENTS
            if name in spec and spec[name] != "*"
        }

    def __repr__(self) -> str:
        return f"URLPattern({self.source!r})"

    def test(self, url: Optional[str]) -> bool:
        return self.exec(url) is not None

    def exec(self, url: Optional[str]) -> Optional[URLMatch]:
        """Match *url*, returning a :class:`URLMatch` or ``None``."""
        if not url:
            return None
        parts = _url_components(url)
        if parts is None:
            return None

        result = URLMatch(input=url)
        for name, compiled in self._components.items():
            match = compiled.regex.fullmatch(parts[name])
            if match is None:
                return None
            values = {compiled.names[g]: v for g, v in match.groupdict().items()}
            result.components[name] = values
            for group, key in compiled.names.items():
                if not group.startswith("_anon"):
                    value = match.group(group)
                    if value is not None or key not in result.groups:
                        result.groups[key] = value
        return result


def _cache_key(pattern: Union[str, Mapping[str, str]]) -> Any:
    if isinstance(pattern, str):
        return pattern
    return tuple(sorted(pattern.items()))


@functools.lru_cache(maxsize=512)
def _compile_cached(key: Any) -> URLPattern:
    if isinstance(key, str):
        return URLPattern(key)
    return URLPattern(dict(key))


def compile_pattern(pattern: PatternSpec) -> URLPattern:
    """Return a (memoized) :class:`URLPattern` for *pattern*."""
    if isinstance(pattern, URLPattern):
        return pattern
    return _compile_cached(_cache_key(pattern))


def match_urls(url: Optional[str], patterns: Optional[Iterable[PatternSpec]]) -> Optional[URLMatch]:
    """Match *url* against *patterns*; the first pattern that matches wins.

    Returns:
        The :class:`URLMatch` of the first matching pattern, or ``None``.
    """
    if not url or not patterns:
        return None
    for pattern in patterns:
        match = compile_pattern(pattern).exec(url)
        if match is not None:
            return match
    return None


def test_urls(url: Optional[str], patterns: Optional[Iterable[PatternSpec]]) -> bool:
    """Whether *url* matches any of *patterns*."""
    return match_urls(url, patterns) is not None


# Not a test function, despite the name.
test_urls.__test__ = False  # type: ignore[attr-defined]
