"""
Document model tests
====================

Round-trip fidelity and path-addressed access on parsed topology files.
"""

import pytest
import yaml

from clabtopo.errors import TopologyParseError
from clabtopo.services.yaml_document import (
    Indentation,
    YamlDocument,
    block_style,
    guess_indentation,
    new_map,
    parse,
    quoted,
    serialize,
    to_node,
)

LAB_YAML = """\
name: lab  # demo lab

topology:
  kinds:
    nokia_srlinux:
      image: ghcr.io/nokia/srlinux:latest
  nodes:
    # core routers
    r1:
      kind: nokia_srlinux
      image: custom/srl:1.0
    r2:
      kind: nokia_srlinux
  links:
    - endpoints: ["r1:e1-1", "r2:e1-1"]
"""


class TestRoundTrip:

    def test_unmodified_document_is_byte_identical(self):
        """Comments, blank lines and quoting survive parse + serialize."""
        assert serialize(parse(LAB_YAML)) == LAB_YAML

    def test_explicit_document_start_is_kept(self):
        text = "---\nname: lab\n"
        doc = parse(text)
        assert doc.explicit_start is True
        assert serialize(doc) == text

    def test_empty_text(self):
        doc = parse("")
        assert doc.contents is None
        assert serialize(doc) == ""

    def test_invalid_yaml_raises_parse_error(self):
        with pytest.raises(TopologyParseError):
            parse("topology: [unclosed\n")

    def test_edit_keeps_untouched_comments(self):
        doc = parse(LAB_YAML)
        doc.get_in(("topology", "nodes", "r2"))["image"] = "alpine:3"
        out = serialize(doc)
        assert "# core routers" in out
        assert "# demo lab" in out
        assert yaml.safe_load(out)["topology"]["nodes"]["r2"]["image"] == "alpine:3"


class TestPathAccess:

    def test_get_in(self):
        doc = parse(LAB_YAML)
        assert doc.get_in(("topology", "nodes", "r1", "kind")) == "nokia_srlinux"
        assert doc.get_in(("topology", "links", 0, "endpoints", 1)) == "r2:e1-1"
        assert doc.get_in(("topology", "missing"), "fallback") == "fallback"

    def test_set_in_creates_missing_levels(self):
        doc = YamlDocument()
        doc.set_in(("topology", "defaults", "image"), "alpine")
        assert doc.to_plain() == {"topology": {"defaults": {"image": "alpine"}}}

    def test_delete_in(self):
        doc = parse(LAB_YAML)
        assert doc.delete_in(("topology", "nodes", "r2")) is True
        assert doc.delete_in(("topology", "nodes", "r2")) is False
        assert "r2" not in doc.get_in(("topology", "nodes"))

    def test_ensure_map_rejects_wrong_shape(self):
        doc = parse("topology:\n  nodes: [a, b]\n")
        with pytest.raises(TypeError):
            doc.ensure_map(("topology", "nodes"))

    def test_ensure_seq_replaces_null(self):
        doc = parse("topology:\n  links:\n")
        links = doc.ensure_seq(("topology", "links"))
        links.append("x")
        assert doc.to_plain() == {"topology": {"links": ["x"]}}


class TestNodeConstruction:

    def test_quoted_scalar_is_emitted_with_double_quotes(self):
        doc = YamlDocument(new_map())
        doc.set_in(("ep",), quoted("r1:e1"))
        assert serialize(doc) == 'ep: "r1:e1"\n'

    def test_to_node_builds_block_containers(self):
        doc = YamlDocument(to_node({"binds": ["a:/a", "b:/b"], "env": {"X": "1"}}))
        assert yaml.safe_load(serialize(doc)) == {"binds": ["a:/a", "b:/b"], "env": {"X": "1"}}
        assert "[" not in serialize(doc)

    def test_block_style_switches_empty_flow_map(self):
        doc = parse("topology:\n  nodes: {}\n")
        nodes = doc.get_in(("topology", "nodes"))
        block_style(nodes)
        nodes["r1"] = to_node({"kind": "linux"})
        assert serialize(doc) == "topology:\n  nodes:\n    r1:\n      kind: linux\n"


ZERO_INDENTED_YAML = """\
name: lab
topology:
  nodes:
    r1:
      kind: linux
  links:
  - endpoints: ["r1:e1", "r2:e1"]
  - type: host
    endpoint:
      node: r1
      interface: eth1
    host-interface: veth0
"""

FOUR_SPACE_YAML = """\
name: lab
topology:
    nodes:
        r1:
            kind: linux
    links:
        - endpoints: ["r1:e1", "r2:e1"]
"""


class TestIndentation:

    def test_default_layout(self):
        assert parse(LAB_YAML).indentation == Indentation(mapping=2, sequence=4, offset=2)

    def test_zero_indented_sequences_round_trip(self):
        doc = parse(ZERO_INDENTED_YAML)
        assert doc.indentation == Indentation(mapping=2, sequence=2, offset=0)
        assert serialize(doc) == ZERO_INDENTED_YAML

    def test_four_space_document_round_trips(self):
        doc = parse(FOUR_SPACE_YAML)
        assert doc.indentation == Indentation(mapping=4, sequence=6, offset=4)
        assert serialize(doc) == FOUR_SPACE_YAML

    def test_edit_keeps_author_layout(self):
        """Adding a node does not re-indent the untouched link lines."""
        doc = parse(ZERO_INDENTED_YAML)
        doc.get_in(("topology", "nodes"))["r2"] = to_node({"kind": "linux"})
        assert serialize(doc) == ZERO_INDENTED_YAML.replace(
            "      kind: linux\n", "      kind: linux\n    r2:\n      kind: linux\n"
        )

    def test_document_without_sequences(self):
        text = "topology:\n    nodes:\n        r1:\n            kind: linux\n"
        assert guess_indentation(text, parse(text).contents) == Indentation(mapping=4, sequence=6, offset=2)

    def test_scalar_document_uses_defaults(self):
        assert parse("just text\n").indentation == Indentation()
