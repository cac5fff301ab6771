"""Round-trip YAML document model for containerlab topology files.

Parsing keeps comments, key order, quoting and flow/block styles so that an
unmodified document serializes back to the same bytes. Mutations happen on the
in-memory tree only; writing to storage is the caller's job.
"""

from __future__ import annotations

import io
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from ruamel.yaml import YAML
from ruamel.yaml.comments import CommentedMap, CommentedSeq
from ruamel.yaml.error import YAMLError
from ruamel.yaml.scalarbool import ScalarBoolean
from ruamel.yaml.scalarstring import DoubleQuotedScalarString
from ruamel.yaml.util import load_yaml_guess_indent

from clabtopo.config import (
    YAML_LINE_WIDTH,
    YAML_MAPPING_INDENT,
    YAML_SEQUENCE_DASH_OFFSET,
    YAML_SEQUENCE_INDENT,
)
from clabtopo.errors import TopologyParseError

_DOC_START_RE = re.compile(r"\A(?:\s*#[^\n]*\n|\s*\n)*---(?:\s|$)")

KeyPath = Sequence[Any]


@dataclass(frozen=True)
class Indentation:
    """Block layout of a document, in ruamel.yaml's ``indent()`` terms."""

    mapping: int = YAML_MAPPING_INDENT
    sequence: int = YAML_SEQUENCE_INDENT
    offset: int = YAML_SEQUENCE_DASH_OFFSET


def _make_yaml(indentation: Indentation | None = None) -> YAML:
    indentation = indentation or Indentation()
    yaml = YAML(typ="rt")
    yaml.preserve_quotes = True
    yaml.default_flow_style = False
    yaml.width = YAML_LINE_WIDTH
    yaml.indent(
        mapping=indentation.mapping,
        sequence=indentation.sequence,
        offset=indentation.offset,
    )
    return yaml


def _mapping_indent(contents: Any) -> int | None:
    """Column step between a key and the keys of its nested block mapping."""
    pending = [contents]
    while pending:
        node = pending.pop(0)
        if is_seq(node):
            pending.extend(node)
            continue
        if not isinstance(node, CommentedMap):
            continue
        for key, value in node.items():
            if isinstance(value, CommentedMap) and value and not value.fa.flow_style():
                key_pos = node.lc.data.get(key)
                if key_pos and value.lc.col > key_pos[1]:
                    return value.lc.col - key_pos[1]
            pending.append(value)
    return None


def guess_indentation(text: str, contents: Any) -> Indentation:
    """Recover the author's indentation so a re-emit leaves untouched lines alone."""
    default = Indentation()
    if not isinstance(contents, (CommentedMap, CommentedSeq)):
        return default
    try:
        _, sequence, offset = load_yaml_guess_indent(text)
    except IndexError:
        # The guesser indexes past bare "-" lines.
        return default
    mapping = _mapping_indent(contents)
    if offset is None or sequence is None:
        # No block sequence yet: new ones follow the mapping step, dash at the default offset.
        mapping = mapping or default.mapping
        offset = min(default.offset, mapping)
        return Indentation(mapping=mapping, sequence=mapping + offset, offset=offset)
    mapping = mapping or max(sequence - offset, 1)
    return Indentation(mapping=mapping, sequence=max(sequence, offset + 2), offset=offset)


class YamlDocument:
    """A parsed topology document with path-addressed access."""

    def __init__(
        self,
        contents: Any = None,
        explicit_start: bool = False,
        indentation: Indentation | None = None,
    ):
        self.contents = contents
        self.explicit_start = explicit_start
        self.indentation = indentation or Indentation()

    def get_in(self, path: KeyPath, default: Any = None) -> Any:
        node = self.contents
        for key in path:
            if is_map(node) and key in node:
                node = node[key]
            elif is_seq(node) and isinstance(key, int) and -len(node) <= key < len(node):
                node = node[key]
            else:
                return default
        return node

    def set_in(self, path: KeyPath, value: Any) -> None:
        if not path:
            self.contents = value
            return
        parent = self.ensure_map(path[:-1])
        parent[path[-1]] = value

    def delete_in(self, path: KeyPath) -> bool:
        if not path:
            return False
        parent = self.get_in(path[:-1])
        key = path[-1]
        if is_map(parent) and key in parent:
            del parent[key]
            return True
        if is_seq(parent) and isinstance(key, int) and -len(parent) <= key < len(parent):
            del parent[key]
            return True
        return False

    def ensure_map(self, path: KeyPath) -> CommentedMap:
        """Return the map at ``path``, creating missing (or null) levels.

        Existing values of another shape are never replaced; a ``TypeError``
        is raised instead so the caller can report a structural error.
        """
        if self.contents is None:
            self.contents = new_map()
        if not is_map(self.contents):
            raise TypeError("document root is not a map")
        node = self.contents
        for key in path:
            child = node.get(key)
            if child is None:
                child = new_map()
                node[key] = child
            elif not is_map(child):
                raise TypeError(f"{key!r} is not a map")
            node = child
        return node

    def ensure_seq(self, path: KeyPath) -> CommentedSeq:
        parent = self.ensure_map(path[:-1])
        key = path[-1]
        child = parent.get(key)
        if child is None:
            child = new_seq()
            parent[key] = child
        elif not is_seq(child):
            raise TypeError(f"{key!r} is not a sequence")
        return child

    def to_plain(self) -> Any:
        return to_plain(self.contents)


def parse(text: str) -> YamlDocument:
    try:
        contents = _make_yaml().load(text)
    except YAMLError as exc:
        raise TopologyParseError(f"Invalid topology YAML: {exc}") from exc
    return YamlDocument(
        contents,
        explicit_start=bool(_DOC_START_RE.match(text)),
        indentation=guess_indentation(text, contents),
    )


def serialize(doc: YamlDocument) -> str:
    if doc.contents is None:
        return "---\n" if doc.explicit_start else ""
    yaml = _make_yaml(doc.indentation)
    yaml.explicit_start = doc.explicit_start
    buf = io.StringIO()
    yaml.dump(doc.contents, buf)
    return buf.getvalue()


# ── Node construction ──────────────────────────────────────────────


def is_map(value: Any) -> bool:
    return isinstance(value, Mapping)


def is_seq(value: Any) -> bool:
    return isinstance(value, list)


def new_map() -> CommentedMap:
    node = CommentedMap()
    node.fa.set_block_style()
    return node


def new_seq(flow: bool = False) -> CommentedSeq:
    node = CommentedSeq()
    if flow:
        node.fa.set_flow_style()
    else:
        node.fa.set_block_style()
    return node


def quoted(value: str) -> DoubleQuotedScalarString:
    """Force a double-quoted scalar (``"eth0:1"`` must stay a string)."""
    return DoubleQuotedScalarString(value)


def to_node(value: Any) -> Any:
    """Convert plain Python data into block-style round-trip nodes."""
    if isinstance(value, (CommentedMap, CommentedSeq)):
        return value
    if isinstance(value, Mapping):
        node = new_map()
        for key, item in value.items():
            node[key] = to_node(item)
        return node
    if isinstance(value, (list, tuple)):
        node = new_seq()
        node.extend(to_node(item) for item in value)
        return node
    return value


def to_plain(value: Any) -> Any:
    """Snapshot a round-trip subtree as plain dicts, lists and scalars."""
    if is_map(value):
        return {str(key): to_plain(item) for key, item in value.items()}
    if is_seq(value):
        return [to_plain(item) for item in value]
    if isinstance(value, (bool, ScalarBoolean)):
        return bool(value)
    if isinstance(value, str):
        return str(value)
    if isinstance(value, int):
        return int(value)
    if isinstance(value, float):
        return float(value)
    return value


def block_style(node: Any) -> None:
    """Switch an empty flow container (``{}`` / ``[]``) to block style before it gains entries."""
    if isinstance(node, (CommentedMap, CommentedSeq)) and not node and node.fa.flow_style():
        node.fa.set_block_style()
