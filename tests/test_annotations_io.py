"""
Annotation store tests
======================

Sidecar path derivation, caching, write dedup, legacy migration and the
per-path ordering guarantees of save/modify.
"""

import asyncio
import json

import pytest

from clabtopo.errors import AnnotationsError
from clabtopo.services.annotations_io import (
    AnnotationsIO,
    annotations_file_path,
    create_empty_annotations,
    ensure_node_annotation,
)
from clabtopo.services.fs_adapter import LocalFileSystem


class CountingFileSystem(LocalFileSystem):
    """Local disk, but counts writes and can slow reads down to force interleaving."""

    def __init__(self, read_delay: float = 0.0):
        self.writes = 0
        self.read_delay = read_delay

    async def read_text(self, path):
        if self.read_delay:
            await asyncio.sleep(self.read_delay)
        return await super().read_text(path)

    async def write_text(self, path, text):
        self.writes += 1
        await super().write_text(path, text)


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


@pytest.fixture
def yaml_path(tmp_path):
    path = tmp_path / "lab.clab.yml"
    path.write_text("name: lab\n")
    return path


def sidecar(yaml_path):
    return json.loads(annotations_file_path(yaml_path).read_text())


class TestPaths:

    def test_sidecar_sits_next_to_topology(self, tmp_path):
        assert annotations_file_path(tmp_path / "lab.clab.yml") == tmp_path / "lab.clab.yml.annotations.json"


class TestLoad:

    def test_absent_file_gives_empty_structure(self, yaml_path):
        annotations = asyncio.run(AnnotationsIO().load_annotations(yaml_path))
        assert annotations == create_empty_annotations()
        assert set(annotations) == {
            "nodeAnnotations",
            "networkNodeAnnotations",
            "groupStyleAnnotations",
            "freeTextAnnotations",
            "freeShapeAnnotations",
        }

    def test_legacy_cloud_nodes_are_migrated(self, yaml_path):
        annotations_file_path(yaml_path).write_text(json.dumps({
            "nodeAnnotations": [],
            "cloudNodeAnnotations": [
                {"id": "host:eth0", "type": "host", "label": "uplink", "position": {"x": 1, "y": 2}, "extra": 1},
            ],
        }))
        annotations = asyncio.run(AnnotationsIO().load_annotations(yaml_path))
        assert "cloudNodeAnnotations" not in annotations
        assert annotations["networkNodeAnnotations"] == [
            {"id": "host:eth0", "type": "host", "label": "uplink", "position": {"x": 1, "y": 2}},
        ]

    def test_corrupt_file_raises(self, yaml_path):
        annotations_file_path(yaml_path).write_text("{not json")
        with pytest.raises(AnnotationsError):
            asyncio.run(AnnotationsIO().load_annotations(yaml_path))

    def test_cache_window(self, yaml_path):
        """Reads inside the freshness window come from the cache; later ones from disk."""
        clock = FakeClock()
        store = AnnotationsIO(clock=clock, cache_ttl=1.0)
        path = annotations_file_path(yaml_path)

        async def scenario():
            path.write_text(json.dumps({"nodeAnnotations": [{"id": "r1"}]}))
            first = await store.load_annotations(yaml_path)
            path.write_text(json.dumps({"nodeAnnotations": [{"id": "r2"}]}))

            clock.now += 0.5
            cached = await store.load_annotations(yaml_path)
            bypassed = await store.load_annotations(yaml_path, skip_cache=True)

            clock.now += 2.0
            path.write_text(json.dumps({"nodeAnnotations": [{"id": "r3"}]}))
            stale = await store.load_annotations(yaml_path)
            return first, cached, bypassed, stale

        first, cached, bypassed, stale = asyncio.run(scenario())
        assert first["nodeAnnotations"] == [{"id": "r1"}]
        assert cached["nodeAnnotations"] == [{"id": "r1"}]
        assert bypassed["nodeAnnotations"] == [{"id": "r2"}]
        assert stale["nodeAnnotations"] == [{"id": "r3"}]

    def test_cached_copy_is_not_shared(self, yaml_path):
        store = AnnotationsIO()

        async def scenario():
            first = await store.load_annotations(yaml_path)
            first["nodeAnnotations"].append({"id": "r1"})
            return await store.load_annotations(yaml_path)

        assert asyncio.run(scenario())["nodeAnnotations"] == []

    def test_clear_cache(self, yaml_path):
        store = AnnotationsIO()

        async def scenario():
            await store.load_annotations(yaml_path)
            assert store.is_cached(yaml_path)
            store.clear_cache()
            return store.is_cached(yaml_path)

        assert asyncio.run(scenario()) is False


class TestSave:

    def test_save_writes_pretty_json(self, yaml_path):
        store = AnnotationsIO()
        annotations = create_empty_annotations()
        annotations["nodeAnnotations"].append({"id": "r1", "position": {"x": 10, "y": 20}})
        asyncio.run(store.save_annotations(yaml_path, annotations))

        text = annotations_file_path(yaml_path).read_text()
        assert text == json.dumps(annotations, indent=2)
        assert sidecar(yaml_path) == annotations

    def test_identical_content_is_not_rewritten(self, yaml_path):
        fs = CountingFileSystem()
        store = AnnotationsIO(fs)
        annotations = {"nodeAnnotations": [{"id": "r1"}]}

        async def scenario():
            await store.save_annotations(yaml_path, annotations)
            await store.save_annotations(yaml_path, dict(annotations))

        asyncio.run(scenario())
        assert fs.writes == 1

    def test_empty_annotations_remove_the_file(self, yaml_path):
        store = AnnotationsIO()
        path = annotations_file_path(yaml_path)

        async def scenario():
            await store.save_annotations(yaml_path, create_empty_annotations())
            created = path.exists()
            await store.save_annotations(yaml_path, {"freeTextAnnotations": [{"id": "t1", "text": "hi"}]})
            written = path.exists()
            await store.save_annotations(yaml_path, create_empty_annotations())
            return created, written, path.exists()

        assert asyncio.run(scenario()) == (False, True, False)

    def test_viewer_settings_alone_count_as_content(self, yaml_path):
        asyncio.run(AnnotationsIO().save_annotations(yaml_path, {"viewerSettings": {"gridSize": 10}}))
        assert sidecar(yaml_path) == {"viewerSettings": {"gridSize": 10}}

    def test_writes_land_in_call_order(self, yaml_path):
        store = AnnotationsIO(CountingFileSystem(read_delay=0.01))

        async def scenario():
            await asyncio.gather(*(
                store.save_annotations(yaml_path, {"nodeAnnotations": [{"id": f"r{i}"}]})
                for i in range(5)
            ))

        asyncio.run(scenario())
        assert sidecar(yaml_path) == {"nodeAnnotations": [{"id": "r4"}]}


class TestModify:

    def test_modify_returns_new_state(self, yaml_path):
        store = AnnotationsIO()

        def add_r1(annotations):
            ensure_node_annotation(annotations, "r1")["position"] = {"x": 1, "y": 1}

        result = asyncio.run(store.modify_annotations(yaml_path, add_r1))
        assert result["nodeAnnotations"] == [{"id": "r1", "position": {"x": 1, "y": 1}}]
        assert sidecar(yaml_path)["nodeAnnotations"] == result["nodeAnnotations"]

    def test_modifier_may_return_replacement(self, yaml_path):
        store = AnnotationsIO()
        asyncio.run(store.modify_annotations(yaml_path, lambda a: {"freeShapeAnnotations": [{"id": "s1"}]}))
        assert sidecar(yaml_path) == {"freeShapeAnnotations": [{"id": "s1"}]}

    def test_overlapping_modifies_keep_both_changes(self, yaml_path):
        """Slow reads would let one caller overwrite the other without the modify lock."""
        store = AnnotationsIO(CountingFileSystem(read_delay=0.02))

        def add(node_id):
            def modifier(annotations):
                ensure_node_annotation(annotations, node_id)["position"] = {"x": 0, "y": 0}
            return modifier

        async def scenario():
            await asyncio.gather(*(store.modify_annotations(yaml_path, add(f"r{i}")) for i in range(4)))

        asyncio.run(scenario())
        ids = [record["id"] for record in sidecar(yaml_path)["nodeAnnotations"]]
        assert sorted(ids) == ["r0", "r1", "r2", "r3"]

    def test_modify_sees_external_edits(self, yaml_path):
        store = AnnotationsIO()
        path = annotations_file_path(yaml_path)

        async def scenario():
            await store.load_annotations(yaml_path)
            path.write_text(json.dumps({"nodeAnnotations": [{"id": "external"}]}))
            return await store.modify_annotations(yaml_path, lambda a: ensure_node_annotation(a, "r1") and None)

        result = asyncio.run(scenario())
        assert [r["id"] for r in result["nodeAnnotations"]] == ["external", "r1"]

    def test_failing_modifier_writes_nothing(self, yaml_path):
        store = AnnotationsIO()
        path = annotations_file_path(yaml_path)
        path.write_text(json.dumps({"nodeAnnotations": [{"id": "r1"}]}))

        def broken(annotations):
            annotations["nodeAnnotations"].clear()
            raise ValueError("bad position")

        async def scenario():
            with pytest.raises(AnnotationsError, match="bad position"):
                await store.modify_annotations(yaml_path, broken)
            return await store.load_annotations(yaml_path)

        assert asyncio.run(scenario())["nodeAnnotations"] == [{"id": "r1"}]
        assert json.loads(path.read_text()) == {"nodeAnnotations": [{"id": "r1"}]}
