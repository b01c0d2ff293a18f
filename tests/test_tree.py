"""
Tree Builder Tests

Rolled-up downline and utility counts, sponsor sentinels and headline stats.
"""
from conftest import full_level, make_member, make_root, make_utility
from matrix.tree import NO_SPONSOR, UNKNOWN_SPONSOR, build_tree, network_stats


def _sample_network():
    root = make_root(utilities=[make_utility("u-root")])
    a = make_member("a", parent_id=root.id, sponsor_id=root.id, level=1,
                    utilities=[make_utility("u-a1"), make_utility("u-a2")])
    b = make_member("b", parent_id=root.id, sponsor_id=root.id, level=1)
    a1 = make_member("a1", parent_id="a", sponsor_id="a", level=2, utilities=[make_utility("u-a1-1")])
    a2 = make_member("a2", parent_id="a", sponsor_id="ghost", level=2)
    return [root, a, b, a1, a2]


class TestBuildTree:

    def test_single_root(self):
        node = build_tree([make_root(utilities=[make_utility("own")])], "root-001")
        assert node.total_downline == 0
        assert node.total_utilities == 0
        assert node.children == []

    def test_unknown_root_returns_none(self):
        assert build_tree([make_root()], "missing") is None

    def test_downline_counts_all_descendants(self):
        node = build_tree(_sample_network(), "root-001")
        assert node.total_downline == 4
        assert [child.id for child in node.children] == ["a", "b"]
        assert node.children[0].total_downline == 2

    def test_utilities_exclude_own_portfolio(self):
        node = build_tree(_sample_network(), "root-001")
        assert node.total_utilities == 3
        assert node.children[0].total_utilities == 1
        assert node.children[0].children[0].total_utilities == 0

    def test_sponsor_sentinels(self):
        node = build_tree(_sample_network(), "root-001")
        a = node.children[0]
        assert node.sponsor_username == NO_SPONSOR
        assert a.sponsor_username == "admin"
        assert a.children[0].sponsor_username == "a"
        assert a.children[1].sponsor_username == UNKNOWN_SPONSOR

    def test_subtree_root(self):
        node = build_tree(_sample_network(), "a")
        assert node.total_downline == 2
        assert node.level == 1

    def test_build_twice_is_structurally_equal(self):
        members = _sample_network()
        assert build_tree(members, "root-001").to_dict() == build_tree(members, "root-001").to_dict()

    def test_cycle_does_not_recurse_forever(self):
        x = make_member("x", parent_id="y")
        y = make_member("y", parent_id="x")
        node = build_tree([x, y], "x")
        assert node.total_downline == 1
        assert node.children[0].children == []

    def test_large_network(self):
        root = make_root()
        members = [root]
        for child in full_level(root):
            members.append(child)
            members.extend(full_level(child))
        node = build_tree(members, root.id)
        assert node.total_downline == 110

    def test_to_dict_hides_credentials(self):
        data = build_tree(_sample_network(), "root-001").to_dict()
        assert "password" not in data
        assert data["totalDownline"] == 4
        assert data["sponsorUsername"] == NO_SPONSOR
        assert "attachmentData" not in data["children"][0]["utilities"][0]
        assert data["children"][0]["children"][0]["username"] == "a1"


class TestNetworkStats:

    def test_headline_numbers(self):
        stats = network_stats(_sample_network())
        assert stats == {
            "totalUsers": 5,
            "matrixDepth": 2,
            "totalUtilities": 4,
            "nextEmptySpot": "admin",
        }

    def test_next_spot_moves_below_full_root(self):
        root = make_root()
        stats = network_stats([root] + full_level(root))
        assert stats["nextEmptySpot"] == f"{root.id}-c0"
        assert stats["matrixDepth"] == 1

    def test_empty_set(self):
        assert network_stats([]) == {
            "totalUsers": 0,
            "matrixDepth": 0,
            "totalUtilities": 0,
            "nextEmptySpot": None,
        }
