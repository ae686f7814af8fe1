"""Tests for snapshot models, content hashing and diffing."""

import pytest


class TestDomHash:
    """Tests for compute_dom_hash and Snapshot.build."""

    def test_hash_is_truncated_sha1_hex(self, snapshot_factory):
        """Test the hash is a 16-character hex digest."""
        snapshot = snapshot_factory(["n1", "n2"])

        assert len(snapshot.dom_hash) == 16
        int(snapshot.dom_hash, 16)

    def test_identical_content_gives_identical_hash(self, snapshot_factory):
        """Test two captures with the same node content hash equal."""
        first = snapshot_factory(["n1", "n2"])
        second = snapshot_factory(["n1", "n2"])

        assert first.snapshot_id != second.snapshot_id
        assert first.dom_hash == second.dom_hash

    @pytest.mark.parametrize("field,value", [
        ("text", "Different"),
        ("value", "typed"),
        ("visible", False),
        ("enabled", False),
        ("stableRef", "ref:other"),
    ])
    def test_hashed_field_change_changes_hash(self, snapshot_factory, node_factory, field, value):
        """Test each hashed field participates in the fingerprint."""
        base = snapshot_factory([node_factory("n1")])
        changed = snapshot_factory([node_factory("n1", **{field: value})])

        assert base.dom_hash != changed.dom_hash

    def test_unhashed_fields_do_not_change_hash(self, snapshot_factory, node_factory):
        """Test geometry, role and name are outside the fingerprint."""
        base = snapshot_factory([node_factory("n1")])
        moved = snapshot_factory([node_factory(
            "n1",
            name="Renamed",
            role="link",
            boundingBox={"x": 500, "y": 500, "width": 1, "height": 1},
        )])

        assert base.dom_hash == moved.dom_hash

    def test_node_order_matters(self, snapshot_factory):
        """Test the fingerprint is over the ordered node list."""
        assert snapshot_factory(["n1", "n2"]).dom_hash != snapshot_factory(["n2", "n1"]).dom_hash

    def test_counts_are_derived(self, snapshot_factory, node_factory):
        """Test nodeCount and interactiveCount come from the nodes."""
        snapshot = snapshot_factory([
            node_factory("n1"),
            node_factory("n2", interactive=False),
        ])

        assert snapshot.node_count == 2
        assert snapshot.interactive_count == 1

    def test_find(self, snapshot_factory):
        """Test find returns the node or None."""
        snapshot = snapshot_factory(["n1"])

        assert snapshot.find("n1").id == "n1"
        assert snapshot.find("n9") is None


class TestSnapshotFromRaw:
    """Tests for building snapshots from the in-page walk output."""

    def test_snapshot_from_raw(self):
        """Test raw walk output is converted with defaults for missing fields."""
        from sazen.snapshot.capture import snapshot_from_raw

        snapshot = snapshot_from_raw({
            "url": "https://app.test/",
            "title": "Home",
            "viewport": {"width": 800, "height": 600},
            "nodes": [{"id": "n1", "tag": "button", "visible": True, "attributes": {"id": "go"}}],
        })

        node = snapshot.nodes[0]
        assert snapshot.viewport.width == 800
        assert node.role == "generic"
        assert node.enabled is True
        assert node.attributes == {"id": "go"}
        assert not node.bounding_box.has_area

    @pytest.mark.asyncio
    async def test_take_snapshot_uses_provider_evaluate(self, fake_provider, app_url):
        """Test take_snapshot evaluates the walk script and parses the result."""
        from sazen.snapshot.capture import take_snapshot

        await fake_provider.navigate(app_url, "load", 1000)
        snapshot = await take_snapshot(fake_provider)

        assert snapshot.url == app_url
        assert [node.id for node in snapshot.nodes] == ["n1", "n2", "n3"]

    def test_script_args_use_camel_case(self):
        """Test snapshot options are passed to the page in camelCase."""
        from sazen.snapshot.capture import OVERLAY_ROOT_ATTRIBUTE, SnapshotOptions

        args = SnapshotOptions(interactive_only=True).to_script_args()

        assert args["interactiveOnly"] is True
        assert args["overlayAttribute"] == OVERLAY_ROOT_ATTRIBUTE


class TestDiffSnapshots:
    """Tests for diff_snapshots."""

    def test_self_diff_is_empty(self, snapshot_factory):
        """Test diffing a snapshot with itself yields no changes."""
        from sazen.snapshot.diff import diff_snapshots

        snapshot = snapshot_factory(["n1", "n2", "n3"])
        diff = diff_snapshots(snapshot, snapshot)

        assert diff.summary.to_dict() == {"added": 0, "removed": 0, "changed": 0}

    def test_added_removed_changed(self, snapshot_factory, node_factory):
        """Test the submit/cancel/retry example."""
        from sazen.snapshot.diff import diff_snapshots

        before = snapshot_factory([
            node_factory("n1", text="Submit"),
            node_factory("n2", text="Cancel"),
        ])
        after = snapshot_factory([
            node_factory("n1", text="Submit now"),
            node_factory("n3", text="Retry"),
        ])

        diff = diff_snapshots(before, after)

        assert [node.id for node in diff.added] == ["n3"]
        assert [node.id for node in diff.removed] == ["n2"]
        assert [node.id for node in diff.changed] == ["n1"]
        change = diff.changed[0].changes[0]
        assert change.field == "text"
        assert (change.before, change.after) == ("Submit", "Submit now")
        assert diff.summary.to_dict() == {"added": 1, "removed": 1, "changed": 1}

    def test_multiple_field_changes_are_listed(self, snapshot_factory, node_factory):
        """Test every differing compared field gets a change entry."""
        from sazen.snapshot.diff import diff_snapshots

        before = snapshot_factory([node_factory("n1")])
        after = snapshot_factory([node_factory("n1", visible=False, enabled=False, name="Other")])

        diff = diff_snapshots(before, after)

        fields = [change.field for change in diff.changed[0].changes]
        assert fields == ["visible", "enabled", "name"]

    def test_geometry_only_change_is_not_a_change(self, snapshot_factory, node_factory):
        """Test bounding box moves are ignored by the diff."""
        from sazen.snapshot.diff import diff_snapshots

        before = snapshot_factory([node_factory("n1")])
        after = snapshot_factory([node_factory("n1", boundingBox={"x": 0, "y": 0, "width": 5, "height": 5})])

        assert diff_snapshots(before, after).summary.changed == 0

    def test_to_dict_shape(self, snapshot_factory):
        """Test serialized diffs carry snapshot ids and summary."""
        from sazen.snapshot.diff import diff_snapshots

        before = snapshot_factory(["n1"])
        after = snapshot_factory(["n2"])
        data = diff_snapshots(before, after).to_dict()

        assert data["beforeSnapshotId"] == before.snapshot_id
        assert data["afterSnapshotId"] == after.snapshot_id
        assert data["added"][0]["id"] == "n2"
        assert data["summary"] == {"added": 1, "removed": 1, "changed": 0}
