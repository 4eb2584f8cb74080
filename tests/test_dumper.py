"""Tests for the Dumper: traversal order, de-duplication and anomalies."""

import io
import json
import logging

import pytest

from db_replicator.replication import (
    MANY_TO_MANY_TYPE,
    Dumper,
    Reference,
    ReferenceList,
    SpecRegistry,
    TupleWriter,
    UnknownAssociationError,
    fetch_record,
)

from conftest import BLOG_ROWS, InMemoryClient


def _identities(tuples) -> list[tuple]:
    return [(t.type, t.id) for t in tuples]


def assert_dependency_order(tuples) -> None:
    """Every reference points at a tuple written earlier; no identity repeats."""
    seen: set[tuple] = set()
    for t in tuples:
        assert (t.type, t.id) not in seen, f"{t.type}[{t.id}] written twice"
        for key, value in t.attributes.items():
            if isinstance(value, Reference):
                assert (value.type, value.id) in seen, f"{t.type}[{t.id}].{key} forward ref"
            elif isinstance(value, ReferenceList):
                for ref_id in value.ids:
                    assert (value.type, ref_id) in seen
        seen.add((t.type, t.id))


# ============================================================================
# Test: Traversal order
# ============================================================================


class TestTraversal:
    """Dependencies first, then the record, then has_one and extras."""

    async def test_author_graph_order(self, source, registry) -> None:
        author = await fetch_record(source, registry, "Author", 1)
        dumper = Dumper(source, registry)
        await dumper.dump(author)

        assert _identities(dumper.to_list()) == [
            ("Author", 1),
            ("Profile", 5),
            ("Post", 10),
            ("Comment", 100),
            ("Tag", 1),
            ("Tag", 2),
            (MANY_TO_MANY_TYPE, "Post:tags:10"),
            ("Post", 11),
            (MANY_TO_MANY_TYPE, "Post:tags:11"),
        ]
        assert_dependency_order(dumper.to_list())

    async def test_belongs_to_written_first(self, source, registry) -> None:
        """Dumping a post writes its author before the post itself."""
        post = await fetch_record(source, registry, "Post", 11)
        dumper = Dumper(source, registry)
        await dumper.dump(post)

        identities = _identities(dumper.to_list())
        assert identities.index(("Author", 1)) < identities.index(("Post", 11))
        assert_dependency_order(dumper.to_list())

    async def test_foreign_keys_tagged(self, source, registry) -> None:
        post = await fetch_record(source, registry, "Post", 10)
        dumper = Dumper(source, registry)
        await dumper.dump(post)

        post_tuple = next(t for t in dumper.to_list() if t.type == "Post" and t.id == 10)
        assert post_tuple.attributes["author_id"] == Reference(type="Author", id=1)
        assert post_tuple.attributes["title"] == "Notes"

    async def test_null_foreign_key_not_tagged(self, registry) -> None:
        db = InMemoryClient({"posts": [{"id": 3, "author_id": None, "title": "Orphan"}]})
        post = await fetch_record(db, registry, "Post", 3)
        dumper = Dumper(db, registry)
        await dumper.dump(post)

        assert dumper.to_list()[0].attributes["author_id"] is None

    async def test_cycle_through_back_reference(self, source, registry) -> None:
        """Comment -> Post -> Author -> posts -> Post is walked once."""
        comment = await fetch_record(source, registry, "Comment", 100)
        dumper = Dumper(source, registry)
        await dumper.dump(comment)

        tuples = dumper.to_list()
        assert_dependency_order(tuples)
        assert _identities(tuples)[-1] == ("Comment", 100)
        assert ("Post", 10) in _identities(tuples)

    async def test_missing_belongs_to_target_skipped(self, registry) -> None:
        db = InMemoryClient({"posts": [{"id": 3, "author_id": 42, "title": "Stray"}]})
        post = await fetch_record(db, registry, "Post", 3)
        dumper = Dumper(db, registry)
        await dumper.dump(post)

        assert _identities(dumper.to_list()) == [
            ("Post", 3),
            (MANY_TO_MANY_TYPE, "Post:tags:3"),
        ]


# ============================================================================
# Test: De-duplication and arguments
# ============================================================================


class TestDedup:
    """No identity is written twice within a session."""

    async def test_same_root_twice(self, source, registry) -> None:
        author = await fetch_record(source, registry, "Author", 1)
        dumper = Dumper(source, registry)
        await dumper.dump(author, author)
        await dumper.dump(author)

        assert _identities(dumper.to_list()).count(("Author", 1)) == 1

    async def test_shared_dependency_written_once(self, source, registry) -> None:
        posts = [
            await fetch_record(source, registry, "Post", 10),
            await fetch_record(source, registry, "Post", 11),
        ]
        dumper = Dumper(source, registry)
        await dumper.dump(posts)

        identities = _identities(dumper.to_list())
        assert identities.count(("Author", 1)) == 1
        assert identities.count(("Tag", 2)) == 1
        assert dumper.dumped(posts[0])

    async def test_none_skipped(self, source, registry) -> None:
        dumper = Dumper(source, registry)
        await dumper.dump(None)
        assert dumper.to_list() == []

    async def test_non_record_rejected(self, source, registry) -> None:
        dumper = Dumper(source, registry)
        with pytest.raises(TypeError, match="Cannot dump a dict"):
            await dumper.dump({"id": 1})


# ============================================================================
# Test: Associations
# ============================================================================


class TestAssociations:
    """Explicit associations, many-to-many tuples and malformed storage."""

    async def test_unknown_association(self, source, registry) -> None:
        author = await fetch_record(source, registry, "Author", 1)
        dumper = Dumper(source, registry)
        with pytest.raises(UnknownAssociationError, match="Author#followers"):
            await dumper.dump_association(author, "followers")

    async def test_many_to_many_tuple(self, source, registry) -> None:
        post = await fetch_record(source, registry, "Post", 10)
        dumper = Dumper(source, registry)
        await dumper.dump(post)

        relation = next(
            t for t in dumper.to_list()
            if t.type == MANY_TO_MANY_TYPE and t.id == "Post:tags:10"
        )
        assert relation.attributes == {
            "id": Reference(type="Post", id=10),
            "class": "Post",
            "ref_class": "Tag",
            "ref_name": "tags",
            "collection": ReferenceList(type="Tag", ids=(1, 2)),
        }

    async def test_many_to_many_written_once(self, source, registry) -> None:
        post = await fetch_record(source, registry, "Post", 10)
        dumper = Dumper(source, registry)
        await dumper.dump(post)
        await dumper.dump_association(post, "tags")

        relation_ids = [t.id for t in dumper.to_list() if t.type == MANY_TO_MANY_TYPE]
        assert sorted(relation_ids) == ["Post:tags:10", "Post:tags:11"]

    async def test_join_table_read_once_per_owner(self, source, registry) -> None:
        """Members and the relation tuple come from one join-table read."""
        post = await fetch_record(source, registry, "Post", 10)
        dumper = Dumper(source, registry)
        await dumper.dump(post)

        join_reads = [filters for table, filters in source.selects if table == "post_tags"]
        assert sorted(join_reads, key=lambda f: f["post_id"]) == [
            {"post_id": 10},
            {"post_id": 11},
        ]

    async def test_malformed_association_skipped(self, registry, caplog) -> None:
        db = InMemoryClient(BLOG_ROWS, join_tables={"post_tags"}, malformed={"comments"})
        post = await fetch_record(db, registry, "Post", 10)
        dumper = Dumper(db, registry)

        with caplog.at_level(logging.WARNING, logger="db_replicator.replication.dumper"):
            await dumper.dump(post)

        assert "Post#comments has_many association unexpectedly returned a dict" in caplog.text
        assert "skipping" in caplog.text
        identities = _identities(dumper.to_list())
        assert ("Post", 10) in identities
        assert ("Comment", 100) not in identities
        assert ("Tag", 1) in identities

    async def test_dump_spec_overrides_traversal(self, source, registry) -> None:
        specs = SpecRegistry()

        @specs.dump_spec("Author")
        async def dump_author(dumper, author):
            await dumper.dump_object(author)
            await dumper.dump_association(author, "posts")

        author = await fetch_record(source, registry, "Author", 1)
        dumper = Dumper(source, registry, dump_specs=specs.dump_specs)
        await dumper.dump(author)

        identities = _identities(dumper.to_list())
        assert identities[0] == ("Author", 1)
        assert ("Profile", 5) not in identities
        assert ("Post", 11) in identities


# ============================================================================
# Test: Sinks
# ============================================================================


class TestSinks:
    """Tuples go to the write function when one is given."""

    async def test_custom_write(self, source, registry) -> None:
        written = []
        tag = await fetch_record(source, registry, "Tag", 1)
        dumper = Dumper(source, registry, write=lambda *args: written.append(args))
        await dumper.dump(tag)

        assert written == [("Tag", 1, {"id": 1, "name": "math"})]
        assert dumper.to_list() == []

    async def test_tuple_writer_stream(self, source, registry) -> None:
        buffer = io.StringIO()
        author = await fetch_record(source, registry, "Author", 1)
        with TupleWriter(buffer) as writer:
            await Dumper(source, registry, write=writer).dump(author)

        lines = [json.loads(line) for line in buffer.getvalue().splitlines()]
        assert lines[0]["format"] == "db-replicator"
        assert lines[-1] == {"end": True, "count": 9}
        assert lines[3]["attributes"]["author_id"] == {"$ref": ["Author", 1]}
