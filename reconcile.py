"""Identity reconciliation: match, resolve, apply and project.

``identify`` is the entry point. It runs the three steps against a
``ContactRepository`` inside one transaction:

* ``find_clusters`` collects every contact in the clusters touched by the
  request's email or phone.
* ``resolve`` turns that snapshot into a ``ResolutionPlan`` without touching
  storage.
* ``apply_plan`` performs the plan's writes, and ``project`` reads the
  consolidated view back.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set

from clusters import ClusterIndex, by_creation
from db_models import Contact, ContactDraft, ContactResponse, LinkPrecedence
from db_setup import ContactRepository
from exceptions import ClusterIntegrityError, InvalidRequest

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CreatePrimary:
    email: Optional[str]
    phone: Optional[str]


@dataclass(frozen=True)
class CreateSecondary:
    email: Optional[str]
    phone: Optional[str]
    linked_id: int


@dataclass(frozen=True)
class DemoteToSecondary:
    contact_id: int
    new_linked_id: int


@dataclass(frozen=True)
class Relink:
    contact_id: int
    new_linked_id: int


@dataclass
class ResolutionPlan:
    """Writes needed to bring the matched clusters to their consolidated state.

    ``primary_id`` is None only when ``create_primary`` is set; the id is
    then assigned by the repository on insert.
    """

    primary_id: Optional[int] = None
    create_primary: Optional[CreatePrimary] = None
    create_secondary: Optional[CreateSecondary] = None
    demotions: List[DemoteToSecondary] = field(default_factory=list)
    relinks: List[Relink] = field(default_factory=list)

    @property
    def is_noop(self) -> bool:
        return (
            self.create_primary is None
            and self.create_secondary is None
            and not self.demotions
            and not self.relinks
        )


def find_clusters(repo: ContactRepository, email: Optional[str] = None, phone: Optional[str] = None) -> List[Contact]:
    """Return all contacts of every cluster matching ``email`` or ``phone``.

    Follows ``linkedId`` both ways until no new contacts turn up, so chains
    left by earlier merges (secondary -> demoted primary -> primary) are
    collected whole.
    """
    direct = repo.find_by_email_or_phone(email, phone)
    if not direct:
        return []

    found: Dict[int, Contact] = {contact.id: contact for contact in direct}
    frontier = sorted(found)
    while frontier:
        discovered: Dict[int, Contact] = {}

        parent_ids: Set[int] = {
            found[contact_id].linkedId for contact_id in frontier
            if found[contact_id].linkedId is not None
        }
        for parent in repo.find_by_ids(parent_ids - set(found)):
            discovered[parent.id] = parent

        for contact_id in frontier:
            for member in repo.find_by_primary_id(contact_id):
                if member.id not in found:
                    discovered[member.id] = member

        found.update(discovered)
        frontier = sorted(discovered)

    contacts = by_creation(found.values())
    logger.debug(
        f"Matched {len(direct)} contacts directly, {len(contacts)} across their clusters"
    )
    return contacts


def _present(values: Iterable[Optional[str]], value: Optional[str]) -> bool:
    return value is None or value in values


def resolve(cluster_contacts: List[Contact], email: Optional[str] = None, phone: Optional[str] = None) -> ResolutionPlan:
    """Compute the writes a request requires, given its matched clusters.

    The oldest primary in the set survives. Every other primary is demoted
    under it and every secondary not already linked to it is re-parented,
    so clusters stay one level deep. A new secondary is added when the
    request brings an email or phone the clusters do not have yet.
    """
    if not cluster_contacts:
        return ResolutionPlan(create_primary=CreatePrimary(email=email, phone=phone))

    index = ClusterIndex(cluster_contacts)
    roots = index.roots()
    primary = index.representative(index.union_all())
    if primary is not None and len(roots) > 1:
        logger.info(f"Merging clusters {roots} under contact {primary.id}")
    if primary is None:
        ids = [contact.id for contact in cluster_contacts]
        raise ClusterIntegrityError(f"No primary contact among matched contacts {ids}")

    plan = ResolutionPlan(primary_id=primary.id)

    email_exists = _present([c.email for c in cluster_contacts], email)
    phone_exists = _present([c.phoneNumber for c in cluster_contacts], phone)
    if not (email_exists and phone_exists):
        plan.create_secondary = CreateSecondary(email=email, phone=phone, linked_id=primary.id)

    for contact in by_creation(cluster_contacts):
        if contact.id == primary.id:
            continue
        if contact.is_primary:
            plan.demotions.append(DemoteToSecondary(contact_id=contact.id, new_linked_id=primary.id))
        elif contact.linkedId != primary.id:
            plan.relinks.append(Relink(contact_id=contact.id, new_linked_id=primary.id))

    return plan


def apply_plan(repo: ContactRepository, plan: ResolutionPlan) -> int:
    """Perform the plan's writes and return the cluster's primary id."""
    if plan.create_primary is not None:
        created = repo.insert(ContactDraft(
            email=plan.create_primary.email,
            phoneNumber=plan.create_primary.phone,
            linkPrecedence=LinkPrecedence.PRIMARY,
        ))
        logger.info(f"Created primary contact {created.id}")
        return created.id

    if plan.create_secondary is not None:
        created = repo.insert(ContactDraft(
            email=plan.create_secondary.email,
            phoneNumber=plan.create_secondary.phone,
            linkedId=plan.create_secondary.linked_id,
            linkPrecedence=LinkPrecedence.SECONDARY,
        ))
        logger.info(f"Created secondary contact {created.id} under {plan.primary_id}")

    for demotion in plan.demotions:
        repo.update(
            demotion.contact_id,
            linkedId=demotion.new_linked_id,
            linkPrecedence=LinkPrecedence.SECONDARY,
        )
        logger.info(f"Demoted primary contact {demotion.contact_id} under {demotion.new_linked_id}")

    for relink in plan.relinks:
        repo.update(relink.contact_id, linkedId=relink.new_linked_id)
        logger.info(f"Re-linked secondary contact {relink.contact_id} to {relink.new_linked_id}")

    return plan.primary_id


def ordered_unique(values: Iterable[Optional[str]], head: Optional[str] = None) -> List[str]:
    """Distinct non-null values in order of first appearance, ``head`` first.

    >>> ordered_unique(["b", None, "a", "b"], head="a")
    ['a', 'b']
    """
    result = [head] if head is not None else []
    for value in values:
        if value is not None and value not in result:
            result.append(value)
    return result


def new_identity_view(primary_id: int, email: Optional[str] = None, phone: Optional[str] = None) -> ContactResponse:
    return ContactResponse(
        primaryContactId=primary_id,
        emails=[email] if email else [],
        phoneNumbers=[phone] if phone else [],
        secondaryContactIds=[],
    )


def project(repo: ContactRepository, primary_id: int) -> ContactResponse:
    """Build the consolidated view of the cluster rooted at ``primary_id``."""
    contacts = by_creation(repo.find_by_primary_id(primary_id))
    primary = next((c for c in contacts if c.id == primary_id), None)
    if primary is None:
        raise ClusterIntegrityError(f"Primary contact {primary_id} not found")

    return ContactResponse(
        primaryContactId=primary_id,
        emails=ordered_unique((c.email for c in contacts), head=primary.email),
        phoneNumbers=ordered_unique((c.phoneNumber for c in contacts), head=primary.phoneNumber),
        secondaryContactIds=[c.id for c in contacts if c.id != primary_id],
    )


def identify(repo: ContactRepository, email: Optional[str] = None, phone: Optional[str] = None) -> ContactResponse:
    """Reconcile one request and return its consolidated contact."""
    if not email and not phone:
        raise InvalidRequest("Either email or phoneNumber must be provided")
    email = email or None
    phone = phone or None

    with repo.transaction():
        plan = resolve(find_clusters(repo, email, phone), email, phone)
        primary_id = apply_plan(repo, plan)
        if plan.create_primary is not None:
            return new_identity_view(primary_id, email, phone)
        if plan.is_noop:
            logger.debug(f"Request matched consolidated cluster {primary_id}")
        return project(repo, primary_id)
