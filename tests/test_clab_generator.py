import yaml

from clabtopo.services.clab_generator import generate_clab_yaml, topology_file_name
from clabtopo.services.clab_importer import list_topologies, summarize_clab
from clabtopo.services.yaml_document import parse


class TestScaffold:

    def test_empty_topology(self):
        data = yaml.safe_load(generate_clab_yaml("lab"))
        assert data == {"name": "lab", "topology": {"nodes": {}, "links": []}}

    def test_key_order_and_default_kind(self):
        text = generate_clab_yaml("lab", nodes={"r1": None, "h1": {"kind": "linux", "image": "alpine"}})
        assert text.index("name:") < text.index("topology:")
        assert yaml.safe_load(text)["topology"]["nodes"] == {
            "r1": {"kind": "nokia_srlinux"},
            "h1": {"kind": "linux", "image": "alpine"},
        }

    def test_scaffold_is_editable(self):
        doc = parse(generate_clab_yaml("lab"))
        assert doc.get_in(("topology", "nodes")) == {}
        assert doc.get_in(("topology", "links")) == []

    def test_file_names(self):
        assert topology_file_name("My Lab") == "My-Lab.clab.yml"
        assert topology_file_name("dc1.clab.yaml") == "dc1.clab.yaml"
        assert topology_file_name("../../etc") == "etc.clab.yml"
        assert topology_file_name("  ") == "topology.clab.yml"


class TestSummaries:

    def test_counts(self):
        text = "name: lab\ntopology:\n  nodes:\n    a: {}\n    b: {}\n  links:\n    - endpoints: [a:e1, b:e1]\n"
        assert summarize_clab(text) == {"name": "lab", "nodes": 2, "links": 1}

    def test_unreadable_content(self):
        assert summarize_clab("topology: [") == {"name": "", "nodes": 0, "links": 0}
        assert summarize_clab("- just\n- a list\n") == {"name": "", "nodes": 0, "links": 0}

    def test_list_topologies(self, tmp_path):
        (tmp_path / "b.clab.yaml").write_text("name: b\n")
        (tmp_path / "a.clab.yml").write_text("name: a\n")
        (tmp_path / "a.clab.yml.annotations.json").write_text("{}")
        assert [r["fileName"] for r in list_topologies(tmp_path)] == ["a.clab.yml", "b.clab.yaml"]
        assert list_topologies(tmp_path / "missing") == []
