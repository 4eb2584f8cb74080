"""Synthetic record carrying the member ids of a many-to-many association.

A many-to-many association has no owning row, so the dumper writes one
extra tuple per (owner, association) after both the owner and all members
are in the stream. The loader translates the member ids and replaces the
owner's join-table rows.
"""

import logging
from typing import TYPE_CHECKING, Any

from db_replicator.replication.errors import StreamFormatError, UnknownAssociationError
from db_replicator.replication.schema import Relationship
from db_replicator.replication.values import Record, Reference, ReferenceList, ReplicantTuple

if TYPE_CHECKING:
    from db_replicator.replication.loader import Loader

logger = logging.getLogger(__name__)

MANY_TO_MANY_TYPE = "ManyToManyRelation"


def relation_id(owner: Record, rel: Relationship) -> str:
    """Identity of the synthetic record: ``Owner:association:owner_id``."""
    return f"{owner.type}:{rel.name}:{owner.id}"


def relation_tuple(owner: Record, rel: Relationship, ids: list[Any]) -> ReplicantTuple:
    """Build the synthetic tuple for ``owner``'s association ``rel``.

    ``ids`` are the member ids read from the join table by ``member_ids``.
    """
    attributes = {
        "id": Reference(type=owner.type, id=owner.id),
        "class": owner.type,
        "ref_class": rel.type,
        "ref_name": rel.name,
        "collection": ReferenceList(type=rel.type, ids=ids),
    }
    return ReplicantTuple(MANY_TO_MANY_TYPE, relation_id(owner, rel), attributes)


async def load_relation(
    loader: "Loader",
    source_id: Any,
    attributes: dict[str, Any],
) -> Record | None:
    """Replace the local owner's association members.

    Returns None (after a warning) when the owner is not in the identity
    map; member ids missing from the identity map are dropped.
    """
    owner_ref = attributes.get("id")
    collection = attributes.get("collection")
    if not isinstance(owner_ref, Reference) or not isinstance(collection, ReferenceList):
        raise StreamFormatError(f"{MANY_TO_MANY_TYPE} {source_id!r} is missing its references")

    owner_type = loader.registry[attributes.get("class") or owner_ref.type]
    rel = owner_type.relationship(attributes.get("ref_name", ""))
    if rel is None or rel.kind != "many_to_many":
        raise UnknownAssociationError(owner_type.name, attributes.get("ref_name", ""))

    owner = loader.lookup(owner_ref.type, owner_ref.id)
    if owner is None:
        loader.warn(
            f"{MANY_TO_MANY_TYPE} {source_id} owner {owner_ref.type}[{owner_ref.id}] "
            f"not found in keymap. skipping."
        )
        return None

    local_ids = []
    for member_id in collection.ids:
        local_id = loader.keymap.local_id(collection.type, member_id)
        if local_id is None:
            loader.warn(
                f"{owner_type.name}#{rel.name} member {collection.type}[{member_id}] "
                f"not found in keymap"
            )
            continue
        local_ids.append(local_id)

    await loader.adapter.delete(rel.through, filters={rel.foreign_key: owner.id})
    for local_id in local_ids:
        await loader.adapter.insert(
            rel.through,
            data={rel.foreign_key: owner.id, rel.association_foreign_key: local_id},
            bypass_hooks=True,
        )
    logger.debug(
        "Set %s#%s on %s to %d member(s)", owner_type.name, rel.name, owner.id, len(local_ids)
    )

    return Record(
        type=MANY_TO_MANY_TYPE,
        id=source_id,
        attributes={"owner": owner.id, "ref_name": rel.name, "collection": local_ids},
    )
