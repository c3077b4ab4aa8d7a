"""Tests for the ClusterIndex union-find."""

from datetime import datetime

from clusters import ClusterIndex, by_creation


class TestClusterIndex:
    """Tests for building and merging clusters."""

    def test_linked_contacts_share_representative(self, make_contact) -> None:
        """Test secondaries resolve to their primary."""
        index = ClusterIndex([
            make_contact(1, email="a"),
            make_contact(2, phone="1", linked_id=1),
            make_contact(3, phone="2", linked_id=1),
        ])

        assert index.find(2) == 1
        assert index.find(3) == 1
        assert index.representative(3).id == 1
        assert index.roots() == [1]

    def test_separate_primaries_stay_separate(self, make_contact) -> None:
        """Test unlinked primaries form their own clusters."""
        index = ClusterIndex([make_contact(2, email="b"), make_contact(1, email="a")])

        assert index.roots() == [1, 2]

    def test_union_keeps_oldest_primary(self, make_contact) -> None:
        """Test merging two clusters keeps the earlier-created primary."""
        index = ClusterIndex([
            make_contact(5, email="a", created_at=datetime(2024, 1, 2)),
            make_contact(9, phone="1", created_at=datetime(2024, 1, 1)),
        ])

        assert index.union(5, 9) == 9
        assert index.representative(5).id == 9

    def test_creation_tie_broken_by_id(self, make_contact) -> None:
        """Test equal createdAt values fall back to id order."""
        same = datetime(2024, 1, 1)
        index = ClusterIndex([
            make_contact(4, email="a", created_at=same),
            make_contact(3, phone="1", created_at=same),
        ])

        assert index.union_all() == 3

    def test_primary_outranks_older_secondary(self, make_contact) -> None:
        """Test a secondary never becomes representative over a primary."""
        orphan = make_contact(1, email="a", linked_id=99)
        primary = make_contact(2, phone="1")
        index = ClusterIndex([orphan, primary])

        assert index.union_all() == 2
        assert index.representative(1).id == 2

    def test_dangling_link_has_no_primary(self, make_contact) -> None:
        """Test a secondary whose primary is absent has no representative."""
        index = ClusterIndex([make_contact(2, email="a", linked_id=1)])

        assert index.find(2) == 2
        assert index.representative(2) is None

    def test_chained_links_reach_primary(self, make_contact) -> None:
        """Test a secondary linked through a demoted primary finds the root."""
        index = ClusterIndex([
            make_contact(3, email="c", linked_id=2),
            make_contact(1, email="a"),
            make_contact(2, phone="1", linked_id=1),
            make_contact(4, email="d"),
        ])

        assert index.representative(3).id == 1
        assert index.roots() == [1, 4]

    def test_union_all_on_empty_snapshot(self) -> None:
        """Test an empty snapshot has no representative."""
        assert ClusterIndex([]).union_all() is None


def test_by_creation_orders_by_timestamp_then_id(make_contact) -> None:
    """Test by_creation sorts on (createdAt, id)."""
    same = datetime(2024, 1, 1)
    contacts = [
        make_contact(2, created_at=same),
        make_contact(1, created_at=datetime(2024, 1, 2)),
        make_contact(3, created_at=same),
    ]

    assert [c.id for c in by_creation(contacts)] == [2, 3, 1]
