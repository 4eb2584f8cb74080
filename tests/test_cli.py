"""Tests for the db-replicator command line."""

import json

import pytest

from db_replicator import cli

from conftest import InMemoryClient

CONFIG_TOML = """
[profiles.src]
url = "postgresql://localhost/src"
description = "Source"

[profiles.dst]
url = "postgresql://localhost/dst"

[[types]]
name = "Author"
table = "authors"
natural_key = ["email"]
extra_associations = ["posts"]
relationships = [{ name = "posts", kind = "has_many", type = "Post" }]

[[types]]
name = "Post"
table = "posts"
relationships = [{ name = "author", kind = "belongs_to", type = "Author" }]
"""


@pytest.fixture
def config_path(tmp_path):
    path = tmp_path / "replicator.toml"
    path.write_text(CONFIG_TOML)
    return path


@pytest.fixture
def databases(monkeypatch):
    """Profile name -> InMemoryClient, served by a patched get_adapter."""
    dbs = {
        "src": InMemoryClient({
            "authors": [{"id": 1, "name": "Ada", "email": "ada@example.com"}],
            "posts": [{"id": 10, "author_id": 1, "title": "Notes"}],
        }),
        "dst": InMemoryClient({
            "authors": [{"id": 1, "name": "Grace", "email": "grace@example.com"}],
        }),
    }

    async def fake_get_adapter(profile_name, config=None, validate=True):
        return dbs[profile_name]

    monkeypatch.setattr(cli, "get_adapter", fake_get_adapter)
    return dbs


# ============================================================================
# Test: dump / validate / load
# ============================================================================


class TestDumpLoad:
    """End-to-end through the command handlers."""

    def test_dump_validate_load(self, config_path, databases, tmp_path) -> None:
        out = tmp_path / "ada.jsonl"
        base = ["--config", str(config_path)]

        assert cli.main(base + ["dump", "--from", "src", "--type", "Author",
                                "--id", "1", "-o", str(out)]) == 0
        lines = [json.loads(line) for line in out.read_text().splitlines()]
        assert [(line.get("type"), line.get("id")) for line in lines[1:-1]] == [
            ("Author", 1),
            ("Post", 10),
        ]
        assert lines[0]["source"] == "src"
        assert databases["src"].closed

        assert cli.main(["validate", str(out)]) == 0

        assert cli.main(base + ["load", str(out), "--to", "dst", "--yes"]) == 0
        dst = databases["dst"]
        assert dst.rows("authors")[-1] == {"id": 2, "name": "Ada", "email": "ada@example.com"}
        assert dst.rows("posts") == [{"id": 1, "author_id": 2, "title": "Notes"}]
        assert dst.commits == 1

    def test_load_requires_confirmation(self, config_path, databases, tmp_path, capsys) -> None:
        out = tmp_path / "empty.jsonl"
        out.write_text('{"end": true, "count": 0}\n')

        assert cli.main(["--config", str(config_path), "load", str(out), "--to", "dst"]) == 0
        assert "--yes" in capsys.readouterr().err
        assert databases["dst"].commits == 0

    def test_load_dry_run(self, config_path, databases, tmp_path, capsys) -> None:
        out = tmp_path / "tag.jsonl"
        out.write_text(
            '{"type": "Author", "id": 5, "attributes": {"id": 5, "name": "Linus", '
            '"email": "linus@example.com"}}\n'
        )

        assert cli.main(["--config", str(config_path), "load", str(out),
                         "--to", "dst", "--dry-run"]) == 0
        assert "DRY RUN" in capsys.readouterr().err
        assert len(databases["dst"].rows("authors")) == 1

    def test_load_unknown_type_fails(self, config_path, databases, tmp_path, capsys) -> None:
        out = tmp_path / "ghost.jsonl"
        out.write_text('{"type": "Ghost", "id": 1, "attributes": {}}\n')

        assert cli.main(["--config", str(config_path), "load", str(out), "--to", "dst", "-y"]) == 1
        assert "rolled back" in capsys.readouterr().err
        assert databases["dst"].rollbacks == 1

    def test_load_missing_file(self, config_path, tmp_path) -> None:
        missing = str(tmp_path / "missing.jsonl")
        assert cli.main(["--config", str(config_path), "load", missing, "--to", "dst"]) == 1

    def test_dump_unknown_type(self, config_path, databases) -> None:
        assert cli.main(["--config", str(config_path), "dump", "--from", "src",
                         "--type", "Ghost", "--id", "1"]) == 1

    def test_dump_unknown_profile(self, config_path) -> None:
        assert cli.main(["--config", str(config_path), "dump", "--from", "nope",
                         "--type", "Author", "--id", "1"]) == 1

    def test_validate_invalid_file(self, tmp_path) -> None:
        path = tmp_path / "dup.jsonl"
        path.write_text(
            '{"type": "Tag", "id": 1, "attributes": {}}\n'
            '{"type": "Tag", "id": 1, "attributes": {}}\n'
        )
        assert cli.main(["validate", str(path)]) == 1


# ============================================================================
# Test: profiles
# ============================================================================


class TestProfiles:
    """profiles reads only the TOML config."""

    def test_lists_profiles(self, config_path, capsys) -> None:
        assert cli.main(["--config", str(config_path), "profiles"]) == 0
        err = capsys.readouterr().err
        assert "src" in err
        assert "dst" in err
        assert "2 record types declared" in err

    def test_missing_config(self, tmp_path, monkeypatch) -> None:
        monkeypatch.chdir(tmp_path)
        assert cli.main(["profiles"]) == 1

    def test_parse_id(self) -> None:
        assert cli._parse_id("42") == 42
        assert cli._parse_id("a1b2") == "a1b2"


# ============================================================================
# Test: Storage and connection failures
# ============================================================================


POST_STREAM = (
    '{"type": "Author", "id": 1, "attributes": {"id": 1, "name": "Ada", '
    '"email": "ada@example.com"}}\n'
    '{"type": "Post", "id": 10, "attributes": {"id": 10, '
    '"author_id": {"$ref": ["Author", 1]}, "title": "Notes"}}\n'
)


class TestFailures:
    """Storage errors end the command with exit code 1, not a traceback."""

    def test_load_storage_failure(self, config_path, databases, tmp_path, capsys) -> None:
        path = tmp_path / "ada.jsonl"
        path.write_text(POST_STREAM)
        dst = databases["dst"]
        dst.fail_on_insert = ("posts", 1)

        assert cli.main(["--config", str(config_path), "load", str(path),
                         "--to", "dst", "--yes"]) == 1
        assert "Load failed, rolled back: injected failure" in capsys.readouterr().err
        assert dst.rollbacks == 1
        assert [row["name"] for row in dst.rows("authors")] == ["Grace"]
        assert dst.closed

    def test_dump_storage_failure(self, config_path, databases, tmp_path, capsys) -> None:
        out = tmp_path / "ada.jsonl"
        databases["src"].fail_on_select = "posts"

        assert cli.main(["--config", str(config_path), "dump", "--from", "src",
                         "--type", "Author", "--id", "1", "-o", str(out)]) == 1
        assert "Dump failed: injected failure" in capsys.readouterr().err
        assert not out.exists()
        assert databases["src"].closed

    def test_connection_failure(self, config_path, tmp_path, monkeypatch, capsys) -> None:
        path = tmp_path / "ada.jsonl"
        path.write_text(POST_STREAM)

        async def refuse(profile_name, config=None, validate=True):
            raise ConnectionRefusedError("connection refused")

        monkeypatch.setattr(cli, "get_adapter", refuse)

        assert cli.main(["--config", str(config_path), "load", str(path),
                         "--to", "dst", "--yes"]) == 1
        assert "Connection failed: connection refused" in capsys.readouterr().err
