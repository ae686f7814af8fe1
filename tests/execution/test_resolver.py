"""Tests for target resolution into locator candidates."""

import pytest


class TestLocatorCandidates:
    """Tests for locator_candidates_for_node."""

    def test_candidate_order(self, node_factory):
        """Test test id, id, role/name and path candidates come in that order."""
        from sazen.execution.resolver import locator_candidates_for_node

        node = node_factory(
            "n1",
            name="Submit order",
            path="body > form > button",
            attributes={"data-testid": "submit", "id": "submit"},
        )
        labels = [candidate.label for candidate in locator_candidates_for_node(node)]

        assert labels == [
            "testId:submit",
            "id:submit",
            "role:button name:Submit order",
            "path:body > form > button",
        ]

    def test_href_and_name_candidates(self, node_factory):
        """Test link href and form name attributes produce CSS candidates."""
        from sazen.execution.resolver import locator_candidates_for_node

        link = node_factory("n3", tag="a", role="link", name="Next", attributes={"href": '/a"b'})
        field = node_factory("n2", tag="input", role="textbox", name="", attributes={"name": "email"})

        link_candidate = locator_candidates_for_node(link)[0]
        field_candidates = locator_candidates_for_node(field)

        assert link_candidate.value == 'a[href="/a\\"b"]'
        assert field_candidates[0].label == "input[name=email]"
        assert field_candidates[0].value == 'input[name="email"]'
        # No role candidate without an accessible name
        assert [candidate.strategy for candidate in field_candidates] == ["css", "css"]

    def test_id_uses_attribute_selector(self, node_factory):
        """Test ids with CSS special characters stay as quoted attribute values."""
        from sazen.execution.resolver import locator_candidates_for_node

        node = node_factory("n1", attributes={"id": "form.submit:1"})

        assert locator_candidates_for_node(node)[0].value == '[id="form.submit:1"]'

    def test_id_with_leading_digit(self, node_factory):
        """Test ids starting with a digit still give a valid selector."""
        from sazen.execution.resolver import locator_candidates_for_node

        node = node_factory("n1", attributes={"id": '1abc"x'})
        candidate = locator_candidates_for_node(node)[0]

        assert candidate.label == 'id:1abc"x'
        assert candidate.value == '[id="1abc\\"x"]'

    def test_generic_role_has_no_role_candidate(self, node_factory):
        """Test generic nodes fall back to path only."""
        from sazen.execution.resolver import locator_candidates_for_node

        node = node_factory("n1", role="generic", path="body > div")

        assert [candidate.label for candidate in locator_candidates_for_node(node)] == ["path:body > div"]

    def test_dedupe_keeps_first_label(self):
        """Test duplicate labels are dropped after the first."""
        from sazen.execution.resolver import LocatorSpec, dedupe_candidates

        candidates = [
            LocatorSpec.css("id:a", "#a"),
            LocatorSpec.css("id:b", "#b"),
            LocatorSpec.css("id:a", "#other"),
        ]

        assert [candidate.value for candidate in dedupe_candidates(candidates)] == ["#a", "#b"]


class TestResolveTarget:
    """Tests for resolve_target."""

    def test_node_id_takes_precedence(self, snapshot_factory):
        """Test nodeId wins over a target descriptor."""
        from sazen.actions import CssTarget
        from sazen.execution.resolver import resolve_target

        snapshot = snapshot_factory(["n1", "n2"])
        resolved = resolve_target(snapshot, node_id="n2", target=CssTarget(kind="css", selector="#x"))

        assert resolved.label == "nodeId:n2"
        assert resolved.node.id == "n2"
        assert resolved.match_count == 1

    def test_unknown_node_id(self, snapshot_factory):
        """Test a missing node id raises before any browser call."""
        from sazen.errors import NodeNotFoundError
        from sazen.execution.resolver import resolve_target

        with pytest.raises(NodeNotFoundError, match="Node 'n9' was not found in snapshot"):
            resolve_target(snapshot_factory(["n1"]), node_id="n9")

    def test_stable_ref_ranks_visible_first(self, snapshot_factory, node_factory):
        """Test stableRef matches are ranked by interaction score and flagged ambiguous."""
        from sazen.actions import StableRefTarget
        from sazen.execution.resolver import resolve_target

        snapshot = snapshot_factory([
            node_factory("n1", stableRef="testid:buy", visible=False, attributes={"id": "hidden-buy"}),
            node_factory("n2", stableRef="testid:buy", attributes={"id": "buy"}),
        ])
        resolved = resolve_target(snapshot, target=StableRefTarget(kind="stableRef", value="testid:buy"))

        assert resolved.node.id == "n2"
        assert resolved.ambiguous is True
        assert resolved.match_count == 2
        assert resolved.candidates[0].label == "id:buy"
        assert "id:hidden-buy" in [candidate.label for candidate in resolved.candidates]

    def test_stable_ref_not_found(self, snapshot_factory):
        """Test an unmatched stableRef raises."""
        from sazen.actions import StableRefTarget
        from sazen.errors import StableRefNotFoundError
        from sazen.execution.resolver import resolve_target

        with pytest.raises(StableRefNotFoundError, match="No node found with stableRef 'testid:missing'"):
            resolve_target(
                snapshot_factory(["n1"]),
                target=StableRefTarget(kind="stableRef", value="testid:missing"),
            )

    def test_role_name_matches_normalized_and_adds_fallbacks(self, snapshot_factory, node_factory):
        """Test role/name matching ignores case and whitespace and appends provider fallbacks."""
        from sazen.actions import RoleNameTarget
        from sazen.execution.resolver import resolve_target

        snapshot = snapshot_factory([node_factory("n1", name="  Submit   ORDER ", attributes={"id": "submit"})])
        resolved = resolve_target(
            snapshot,
            target=RoleNameTarget(kind="roleName", role="button", name="submit order"),
        )

        labels = [candidate.label for candidate in resolved.candidates]
        assert resolved.match_count == 1
        assert resolved.node is None
        assert labels[0] == "id:submit"
        assert labels[-2:] == [
            "getByRole(button, submit order, exact=true)",
            "getByRole(button, submit order, exact=false)",
        ]
        assert resolved.candidates[-2].exact is True
        assert resolved.candidates[-1].exact is None

    def test_role_name_without_matches_still_has_fallbacks(self, snapshot_factory):
        """Test role/name resolution never fails on its own."""
        from sazen.actions import RoleNameTarget
        from sazen.execution.resolver import resolve_target

        resolved = resolve_target(
            snapshot_factory(["n1"]),
            target=RoleNameTarget(kind="roleName", role="link", name="Help"),
        )

        assert resolved.match_count == 0
        assert len(resolved.candidates) == 2

    def test_css_target(self, snapshot_factory):
        """Test a CSS target yields exactly one candidate."""
        from sazen.actions import CssTarget
        from sazen.execution.resolver import resolve_target

        resolved = resolve_target(snapshot_factory(["n1"]), target=CssTarget(kind="css", selector="#submit"))

        assert resolved.label == "css:#submit"
        assert [(c.strategy, c.value) for c in resolved.candidates] == [("css", "#submit")]

    def test_missing_target(self, snapshot_factory):
        """Test resolution without nodeId or target raises."""
        from sazen.errors import MissingTargetError
        from sazen.execution.resolver import resolve_target

        with pytest.raises(MissingTargetError):
            resolve_target(snapshot_factory(["n1"]))
