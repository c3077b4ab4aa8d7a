"""Union-find over a snapshot of contacts.

Each cluster's representative is its oldest primary contact, which is the
contact that survives as primary when clusters are merged.
"""

import logging
from typing import Dict, Iterable, List, Optional

from db_models import Contact

logger = logging.getLogger(__name__)


def creation_key(contact: Contact):
    """Sort key giving the strict creation order of contacts."""
    return (contact.createdAt, contact.id)


def by_creation(contacts: Iterable[Contact]) -> List[Contact]:
    return sorted(contacts, key=creation_key)


class ClusterIndex:
    """Disjoint sets of contacts keyed by contact id.

    Built from a snapshot; ``linkedId`` edges are unioned on construction.
    A linkedId pointing outside the snapshot (missing or soft-deleted
    primary) is left dangling and the contact stays in its own set.
    """

    def __init__(self, contacts: Iterable[Contact]):
        self._contacts: Dict[int, Contact] = {}
        self._parent: Dict[int, int] = {}

        for contact in by_creation(contacts):
            self._contacts[contact.id] = contact
            self._parent[contact.id] = contact.id

        for contact in self._contacts.values():
            if contact.linkedId is None:
                continue
            if contact.linkedId in self._contacts:
                self.union(contact.id, contact.linkedId)
            else:
                logger.warning(
                    f"Contact {contact.id} links to {contact.linkedId}, which is missing or deleted"
                )

    def find(self, contact_id: int) -> int:
        root = contact_id
        while self._parent[root] != root:
            root = self._parent[root]
        # path compression
        while self._parent[contact_id] != root:
            self._parent[contact_id], contact_id = root, self._parent[contact_id]
        return root

    def _outranks(self, a: int, b: int) -> bool:
        """True if ``a`` should represent a set containing ``b``."""
        contact_a, contact_b = self._contacts[a], self._contacts[b]
        if contact_a.is_primary != contact_b.is_primary:
            return contact_a.is_primary
        return creation_key(contact_a) < creation_key(contact_b)

    def union(self, a: int, b: int) -> int:
        """Merge the sets holding ``a`` and ``b``; return the representative."""
        root_a, root_b = self.find(a), self.find(b)
        if root_a == root_b:
            return root_a
        if self._outranks(root_b, root_a):
            root_a, root_b = root_b, root_a
        self._parent[root_b] = root_a
        return root_a

    def union_all(self) -> Optional[int]:
        """Collapse the whole snapshot into one set (a merge request)."""
        ids = list(self._parent)
        if not ids:
            return None
        for contact_id in ids[1:]:
            self.union(ids[0], contact_id)
        return self.find(ids[0])

    def roots(self) -> List[int]:
        """Set representatives, oldest first."""
        return sorted({self.find(contact_id) for contact_id in self._parent},
                      key=lambda root: creation_key(self._contacts[root]))

    def representative(self, contact_id: int) -> Optional[Contact]:
        """The surviving primary of ``contact_id``'s set, or None if it has none."""
        root = self._contacts[self.find(contact_id)]
        return root if root.is_primary else None
