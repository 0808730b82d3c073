"""Owner scope resolution for documents.

A document's owning business can be read from the document itself or from
the records it links to. The lookup order is an explicit precedence list:

    self -> linked job -> linked invoice -> linked estimate

``resolve_owner_id`` walks that list and returns the first owner id that is
known to be valid. It only reads; callers decide what to do with the result.
"""

from typing import Callable, Iterable, Mapping, Optional, Set, Tuple

from core.models.entities import EntityBase, Invoice, Job


# (label, attribute on the document holding the linked record id, lookup table)
OWNER_PRECEDENCE: Tuple[Tuple[str, Optional[str], str], ...] = (
    ("self", None, ""),
    ("job", "job_id", "jobs"),
    ("invoice", "invoice_id", "invoices"),
    ("estimate", "estimate_id", "invoices"),
)


def owner_candidates(
    document: EntityBase,
    jobs: Mapping[str, Job],
    invoices: Mapping[str, Invoice],
) -> Iterable[Tuple[str, str]]:
    """Yield ``(source, owner_id)`` pairs in precedence order."""
    tables = {"jobs": jobs, "invoices": invoices}
    for source, link_attr, table in OWNER_PRECEDENCE:
        if link_attr is None:
            owner_id = getattr(document, "owner_id", None)
            if owner_id:
                yield source, owner_id
            continue

        linked_id = getattr(document, link_attr, None)
        if not linked_id:
            continue
        linked = tables[table].get(linked_id)
        if linked is not None and linked.owner_id:
            yield source, linked.owner_id


def resolve_owner_id(
    document: EntityBase,
    valid_owner_ids: Set[str],
    jobs: Mapping[str, Job],
    invoices: Mapping[str, Invoice],
    fallback: Optional[str] = None,
) -> Optional[str]:
    """Return the first valid owner id along the precedence list.

    Args:
        document: Client, Invoice, Contract or Job record
        valid_owner_ids: Ids of owners that exist in the store
        jobs: Jobs by id
        invoices: Invoices and estimates by id
        fallback: Returned when no candidate is valid

    Returns:
        An owner id from ``valid_owner_ids``, or ``fallback``
    """
    for _, owner_id in owner_candidates(document, jobs, invoices):
        if owner_id in valid_owner_ids:
            return owner_id
    return fallback


def index_by_id(records: Iterable[EntityBase]) -> dict:
    return {record.id: record for record in records}


OwnerLookup = Callable[[EntityBase], Optional[str]]


def make_owner_lookup(
    valid_owner_ids: Set[str],
    jobs: Iterable[Job],
    invoices: Iterable[Invoice],
    fallback: Optional[str] = None,
) -> OwnerLookup:
    """Bind the lookup tables once and return a one-argument resolver."""
    jobs_by_id = index_by_id(jobs)
    invoices_by_id = index_by_id(invoices)

    def lookup(document: EntityBase) -> Optional[str]:
        return resolve_owner_id(
            document, valid_owner_ids, jobs_by_id, invoices_by_id, fallback
        )

    return lookup


__all__ = [
    "OWNER_PRECEDENCE",
    "owner_candidates",
    "resolve_owner_id",
    "make_owner_lookup",
]
