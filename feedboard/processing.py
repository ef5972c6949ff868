"""
Template processing utilities.

Pure functions used by the engine and the scheduler:

- parse_document: parse a JSON response, keeping numbers as written
- extract_json_value: pull a value out of a document by dotted path
- resolve_template: substitute {{var}} placeholders from a context
- apply_transforms: run regex_replace / map rules over a context

None of these perform I/O and none of them raise on bad input: a missing
path yields "?", an invalid regex leaves the value alone, an unresolved
placeholder renders as an empty string.
"""

from __future__ import annotations

import json
import logging
import re
from typing import TYPE_CHECKING, Any, Iterable, MutableMapping

if TYPE_CHECKING:
    from feedboard.templates.schemas import Transform

logger = logging.getLogger(__name__)

# Returned when a path does not resolve inside a document
MISSING = "?"

_PLACEHOLDER = re.compile(r"\{\{.*?\}\}")
_INDEXED_SEGMENT = re.compile(r"^(?P<name>[^\[]*)\[(?P<index>[^\]]*)\]$")
_GROUP_REFERENCE = re.compile(r"\$(?:\{(\w+)\}|(\d+)|(\$)|(&))")


class JsonNumber(str):
    """A JSON number kept as its original source text."""

    __slots__ = ()


# =============================================================================
# JSON documents
# =============================================================================


def parse_document(text: str) -> Any:
    """
    Parse JSON text into plain Python containers.

    Numbers are returned as JsonNumber (a str subclass holding the raw
    text) so that extraction can hand back "21.50" rather than "21.5".

    Raises:
        json.JSONDecodeError: If text is not valid JSON
    """
    return json.loads(text, parse_int=JsonNumber, parse_float=JsonNumber)


def extract_json_value(document: Any, path: str) -> str:
    """
    Extract a value from a parsed JSON document.

    Path syntax is dot separated; a segment may carry one array index:
        "data.current.temp"
        "list[0].id"
        "[2].name"

    Leaf conversion:
        string -> itself, number -> raw text, bool -> "true"/"false",
        null -> "", object/array -> compact JSON text

    Args:
        document: Result of parse_document (or equivalent plain data)
        path: Dotted path

    Returns:
        The value as a string, or "?" when the path does not resolve
    """
    try:
        current = document
        for segment in path.split("."):
            indexed = _INDEXED_SEGMENT.match(segment)
            if indexed:
                name = indexed.group("name")
                index = int(indexed.group("index"))
                if name:
                    if not isinstance(current, dict) or name not in current:
                        return MISSING
                    current = current[name]
                if not isinstance(current, list) or not 0 <= index < len(current):
                    return MISSING
                current = current[index]
            else:
                if not isinstance(current, dict) or segment not in current:
                    return MISSING
                current = current[segment]

        return _leaf_to_text(current)
    except Exception as e:
        logger.debug(f"Path '{path}' not extractable: {e}")
        return MISSING


def _leaf_to_text(node: Any) -> str:
    if isinstance(node, bool):
        return "true" if node else "false"
    if node is None:
        return ""
    if isinstance(node, (JsonNumber, str)):
        return str(node)
    if isinstance(node, (dict, list, int, float)):
        return _dump(node)
    return MISSING


def _dump(node: Any) -> str:
    """Serialize a node compactly, writing JsonNumber values verbatim."""
    if isinstance(node, JsonNumber):
        return str(node)
    if isinstance(node, dict):
        items = (f"{json.dumps(k, ensure_ascii=False)}:{_dump(v)}" for k, v in node.items())
        return "{" + ",".join(items) + "}"
    if isinstance(node, list):
        return "[" + ",".join(_dump(v) for v in node) + "]"
    return json.dumps(node, ensure_ascii=False)


# =============================================================================
# Templates
# =============================================================================


def resolve_template(template: str | None, context: MutableMapping[str, str]) -> str:
    """
    Substitute {{key}} placeholders with context values.

    Placeholders whose key is not in the context are removed, so the
    result never shows raw {{...}} tokens.

    Example:
        >>> resolve_template("{{city}} {{temp}}°C {{nope}}", {"city": "Oslo", "temp": "3"})
        'Oslo 3°C '
    """
    if not template:
        return ""
    if "{{" not in template:
        return template

    result = template
    for key, value in context.items():
        result = result.replace("{{" + key + "}}", value)

    return _PLACEHOLDER.sub("", result)


# =============================================================================
# Transforms
# =============================================================================


def apply_transforms(
    transforms: Iterable["Transform"] | None,
    context: MutableMapping[str, str],
) -> None:
    """
    Apply transform rules to the context in declared order.

    A rule whose source variable is missing is skipped. regex_replace
    with an invalid pattern or an unknown group reference, and map with
    an unmapped value, pass the source value through unchanged into the
    target variable.
    """
    if not transforms:
        return

    for t in transforms:
        source = t.source
        if source not in context:
            continue

        value = context[source]

        if t.function == "regex_replace":
            try:
                value = re.sub(t.pattern, _replacement_template(t.to), value)
            except (re.error, IndexError) as e:
                logger.debug(f"regex_replace on '{source}' ignored: {e}")
        elif t.function == "map":
            value = t.map.get(value, value)

        context[t.target_var] = value


def _replacement_template(to: str) -> str:
    """
    Convert a replacement string to re.sub syntax.

    `$1`, `${name}`, `$&` refer to groups and `$$` is a literal dollar;
    everything else, backslashes included, is literal text.
    """

    def convert(match: re.Match[str]) -> str:
        name, number, dollar, whole = match.groups()
        if dollar:
            return "$"
        if whole:
            return r"\g<0>"
        return rf"\g<{name or number}>"

    return _GROUP_REFERENCE.sub(convert, to.replace("\\", "\\\\"))
