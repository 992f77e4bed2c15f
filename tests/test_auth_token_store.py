"""Unit tests for the file-backed token store."""

# pylint: disable=redefined-outer-name

from __future__ import annotations

import asyncio
import json
import os
import stat
import sys

from pathlib import Path
from unittest.mock import patch

import pytest

from outlook_mcp.auth.token_store import (
    FileTokenStore,
    _deserialize_tokens,
    _serialize_tokens,
)
from outlook_mcp.auth.types import TokenSet
from outlook_mcp.exceptions import TokenStoreCorrupt, TokenStoreMissing
from tests.conftest import write_raw_tokens


# ── Serialization ───────────────────────────────────────────────────


class TestSerialization:
    """Tests for token serialization helpers."""

    def test_serialize_is_json(self, sample_tokens: TokenSet) -> None:
        """Serialized output is a flat JSON object."""
        parsed = json.loads(_serialize_tokens(sample_tokens))
        assert parsed["access_token"] == "at_test_123"
        assert parsed["expires_at"] == sample_tokens.expires_at
        assert parsed["ext_expires_in"] == 3600

    def test_deserialize_minimal(self) -> None:
        """Only access_token is required."""
        tokens = _deserialize_tokens(json.dumps({"access_token": "at_minimal"}))
        assert tokens.access_token == "at_minimal"
        assert tokens.token_type == "Bearer"
        assert tokens.refresh_token is None

    @pytest.mark.parametrize(
        "data",
        [
            "not json",
            "[1, 2]",
            '{"refresh_token": "r"}',
            '{"access_token": "a", "expires_at": "soon"}',
            '{"access_token": null, "expires_at": 1}',
            '{"access_token": "", "expires_at": 1}',
            '{"access_token": 123, "expires_at": 1}',
            '{"access_token": "a", "refresh_token": 7}',
        ],
    )
    def test_deserialize_rejects(self, data: str) -> None:
        """Malformed content raises ValueError."""
        with pytest.raises(ValueError):
            _deserialize_tokens(data)


# ── FileTokenStore ──────────────────────────────────────────────────


class TestFileTokenStore:
    """Tests for FileTokenStore."""

    def test_write_then_read(self, token_store: FileTokenStore, sample_tokens: TokenSet) -> None:
        """read() returns exactly what write() stored, expires_at included."""
        asyncio.run(token_store.write(sample_tokens))
        assert asyncio.run(token_store.read()) == sample_tokens

    def test_write_creates_parent(self, token_store: FileTokenStore, sample_tokens: TokenSet) -> None:
        """Missing parent directories are created."""
        assert not token_store.path.parent.exists()
        asyncio.run(token_store.write(sample_tokens))
        assert token_store.path.is_file()

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions")
    def test_file_is_private(self, token_store: FileTokenStore, sample_tokens: TokenSet) -> None:
        """The token file is readable by its owner only."""
        asyncio.run(token_store.write(sample_tokens))
        mode = stat.S_IMODE(token_store.path.stat().st_mode)
        assert mode == 0o600

    def test_overwrite_replaces(self, token_store: FileTokenStore, sample_tokens: TokenSet) -> None:
        """A second write fully replaces the first."""
        asyncio.run(token_store.write(sample_tokens))
        replacement = TokenSet(access_token="new", expires_at=1)
        asyncio.run(token_store.write(replacement))
        assert asyncio.run(token_store.read()) == replacement

    def test_no_temp_files_left(self, token_store: FileTokenStore, sample_tokens: TokenSet) -> None:
        """Only the token file remains after a write."""
        asyncio.run(token_store.write(sample_tokens))
        assert [p.name for p in token_store.path.parent.iterdir()] == [token_store.path.name]

    def test_failed_write_keeps_old_file(
        self, token_store: FileTokenStore, sample_tokens: TokenSet
    ) -> None:
        """If the rename fails the previous file is untouched and the temp file removed."""
        before = write_raw_tokens(token_store.path, {"access_token": "old"})

        with patch("outlook_mcp.auth.token_store.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(OSError, match="disk full"):
                asyncio.run(token_store.write(sample_tokens))

        assert token_store.path.read_bytes() == before
        assert [p.name for p in token_store.path.parent.iterdir()] == [token_store.path.name]

    def test_read_missing(self, token_store: FileTokenStore) -> None:
        """Reading a missing file raises TokenStoreMissing."""
        with pytest.raises(TokenStoreMissing) as exc_info:
            asyncio.run(token_store.read())
        assert exc_info.value.path == str(token_store.path)

    def test_read_corrupt(self, token_store: FileTokenStore) -> None:
        """Unparsable content raises TokenStoreCorrupt."""
        token_store.path.parent.mkdir(parents=True)
        token_store.path.write_text("{truncated", encoding="utf-8")
        with pytest.raises(TokenStoreCorrupt):
            asyncio.run(token_store.read())

    def test_read_directory_is_corrupt(self, token_store: FileTokenStore) -> None:
        """An unreadable path is reported as corrupt, not missing."""
        token_store.path.mkdir(parents=True)
        with pytest.raises(TokenStoreCorrupt):
            asyncio.run(token_store.read())

    def test_read_invalid_utf8_is_corrupt(self, token_store: FileTokenStore) -> None:
        """Bytes that do not decode as UTF-8 raise TokenStoreCorrupt."""
        token_store.path.parent.mkdir(parents=True)
        token_store.path.write_bytes(b"\xff\xfe\x00garbage")
        with pytest.raises(TokenStoreCorrupt) as exc_info:
            asyncio.run(token_store.read())
        assert exc_info.value.path == str(token_store.path)

    def test_read_null_access_token_is_corrupt(self, token_store: FileTokenStore) -> None:
        """A stored token set without a usable access token is corrupt."""
        write_raw_tokens(token_store.path, {"access_token": None, "expires_at": 5})
        with pytest.raises(TokenStoreCorrupt):
            asyncio.run(token_store.read())

    def test_read_ignores_unknown_fields(self, token_store: FileTokenStore) -> None:
        """Extra fields written by other tools are carried along."""
        write_raw_tokens(
            token_store.path,
            {"access_token": "a", "expires_at": 5, "id_token": "idt"},
        )
        tokens = asyncio.run(token_store.read())
        assert tokens.expires_at == 5
        assert tokens.extra == {"id_token": "idt"}

    def test_delete(self, token_store: FileTokenStore, sample_tokens: TokenSet) -> None:
        """delete() removes the file; exists() reflects it."""
        asyncio.run(token_store.write(sample_tokens))
        assert asyncio.run(token_store.exists())
        asyncio.run(token_store.delete())
        assert not asyncio.run(token_store.exists())

    def test_delete_missing(self, token_store: FileTokenStore) -> None:
        """Deleting a missing file is not an error."""
        asyncio.run(token_store.delete())

    def test_path_expanded(self) -> None:
        """~ is expanded in the path."""
        store = FileTokenStore("~/tokens.json")
        assert store.path == Path(os.path.expanduser("~/tokens.json"))
