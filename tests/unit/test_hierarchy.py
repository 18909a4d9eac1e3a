# =============================================================================
# tests/unit/test_hierarchy.py
# Unit Tests for Recipient Resolution and the Hierarchy Graph
# =============================================================================

from tracker_core.models import User, UserHierarchy
from tracker_core.sync.hierarchy import HierarchyGraph, is_address, resolve_recipients


def make_user(email, **hierarchy):
    return User(
        id=f"user_{email.split('@')[0]}",
        email=email,
        organization_id="org_acme",
        hierarchy=UserHierarchy(**hierarchy) if hierarchy else None,
    )


class TestResolveRecipients:
    """Who receives a broadcast change"""

    def test_includes_self_manager_and_subordinates(self, se_user):
        recipients = resolve_recipients(se_user)

        assert recipients == frozenset({"se@acme.com", "rsm@acme.com", "dse@acme.com"})

    def test_user_without_hierarchy_gets_own_copy(self):
        assert resolve_recipients(make_user("solo@acme.com")) == frozenset({"solo@acme.com"})

    def test_drops_values_without_address_marker(self):
        user = make_user(
            "se@acme.com",
            rsm_email="not-an-address",
            se_emails=["", "   ", "ok@acme.com", "@acme.com", "name@"],
        )

        assert resolve_recipients(user) == frozenset({"se@acme.com", "ok@acme.com"})

    def test_duplicates_collapse(self):
        user = make_user(
            "se@acme.com",
            rsm_email="rsm@acme.com",
            dealer_emails=["rsm@acme.com", " se@acme.com "],
        )

        assert resolve_recipients(user) == frozenset({"se@acme.com", "rsm@acme.com"})

    def test_addresses_differing_only_in_case_collapse(self):
        user = make_user("SE@Acme.com", rsm_email="Rsm@Acme.com", dealer_emails=["rsm@acme.com"])

        assert resolve_recipients(user) == frozenset({"se@acme.com", "rsm@acme.com"})

    def test_order_of_tiers_does_not_matter(self):
        first = make_user("a@acme.com", se_emails=["b@acme.com", "c@acme.com"], dse_emails=["d@acme.com"])
        second = make_user("a@acme.com", se_emails=["c@acme.com"], dse_emails=["d@acme.com", "b@acme.com"])

        assert resolve_recipients(first) == resolve_recipients(second)

    def test_no_valid_address_means_empty(self):
        user = User(id="u", email="nobody", organization_id="org_acme")

        assert resolve_recipients(user) == frozenset()

    def test_is_address(self):
        assert is_address("x@y.com")
        assert not is_address("xy.com")
        assert not is_address(None)


class TestHierarchyGraph:
    """Explicit manager -> subordinate relation"""

    def test_navigation_by_address(self, rsm_user, se_user):
        graph = HierarchyGraph.from_users([rsm_user, se_user])

        assert graph.manager_of("se@acme.com") == "rsm@acme.com"
        assert graph.subordinates_of("rsm@acme.com") == frozenset({"se@acme.com", "dse@acme.com"})
        assert graph.subordinates_of("se@acme.com") == frozenset({"dse@acme.com"})
        assert "dse@acme.com" in graph

    def test_reports_under_is_transitive(self):
        graph = HierarchyGraph()
        graph.add_edge("rsm@acme.com", "se@acme.com")
        graph.add_edge("se@acme.com", "dealer@acme.com")
        graph.add_edge("dealer@acme.com", "dse@acme.com")

        assert graph.reports_under("rsm@acme.com") == frozenset(
            {"se@acme.com", "dealer@acme.com", "dse@acme.com"}
        )

    def test_cycles_are_tolerated(self):
        graph = HierarchyGraph()
        graph.add_edge("a@acme.com", "b@acme.com")
        graph.add_edge("b@acme.com", "a@acme.com")

        assert graph.reports_under("a@acme.com") == frozenset({"b@acme.com"})

    def test_invalid_edges_are_ignored(self):
        graph = HierarchyGraph()
        graph.add_edge("a@acme.com", "broken")
        graph.add_edge("a@acme.com", "a@acme.com")

        assert graph.subordinates_of("a@acme.com") == frozenset()
        assert graph.manager_of("unknown@acme.com") is None
