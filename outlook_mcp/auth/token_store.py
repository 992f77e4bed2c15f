"""File-backed token storage.

The token store is the only state shared between the MCP server process
and the auth callback server process. It is shared through the
filesystem: writers replace the whole file atomically, readers always
re-read it. There is no cross-process lock; a reader racing a writer
sees either the old or the new file, never a truncated one.

All public methods are async (file I/O runs in the default executor) so
callers on an event loop never block on disk.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import os
import tempfile

from pathlib import Path

from ..exceptions import TokenStoreCorrupt, TokenStoreMissing
from .types import TokenSet


logger = logging.getLogger("outlook_mcp.auth")


def _serialize_tokens(tokens: TokenSet) -> str:
    """Serialize a TokenSet to JSON."""
    return json.dumps(tokens.to_dict(), indent=2)


def _deserialize_tokens(data: str) -> TokenSet:
    """Deserialize a TokenSet from JSON.

    Raises
    ------
    ValueError
        If the data is not a JSON object with an ``access_token``.
    """
    obj = json.loads(data)
    if not isinstance(obj, dict):
        msg = f"expected a JSON object, got {type(obj).__name__}"
        raise ValueError(msg)
    try:
        return TokenSet.from_dict(obj)
    except (KeyError, TypeError) as exc:
        msg = f"invalid token set: {exc}"
        raise ValueError(msg) from exc


class FileTokenStore:
    """JSON file holding the current token set.

    Parameters
    ----------
    path : str or Path
        Location of the token file. Parent directories are created on
        first write.
    """

    def __init__(self, path: str | Path) -> None:
        """Initialize the file token store."""
        self.path = Path(path).expanduser()

    def __repr__(self) -> str:
        return f"FileTokenStore({str(self.path)!r})"

    async def write(self, tokens: TokenSet) -> None:
        """Persist ``tokens``, replacing any previous contents.

        Parameters
        ----------
        tokens : TokenSet
            The full token set to persist.
        """
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._write_sync, tokens)

    async def read(self) -> TokenSet:
        """Load the stored token set.

        Returns
        -------
        TokenSet
            The stored token set.

        Raises
        ------
        TokenStoreMissing
            If the file does not exist.
        TokenStoreCorrupt
            If the file cannot be parsed as a token set.
        """
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._read_sync)

    async def delete(self) -> None:
        """Remove the token file. Missing files are ignored."""
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._delete_sync)

    async def exists(self) -> bool:
        """Check whether a token file is present."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.path.is_file)

    def _write_sync(self, tokens: TokenSet) -> None:
        """Write to a sibling temp file, fsync, then rename over the target."""
        data = _serialize_tokens(tokens)
        self.path.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self.path.name}.",
            suffix=".tmp",
            dir=self.path.parent,
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(data)
                fh.flush()
                os.fsync(fh.fileno())
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, self.path)
        except BaseException:
            with contextlib.suppress(OSError):
                os.unlink(tmp_name)
            raise

        logger.debug("Token store written: %s", self.path)

    def _read_sync(self) -> TokenSet:
        """Read and parse the token file."""
        try:
            raw = self.path.read_bytes()
        except FileNotFoundError:
            msg = "No token store found"
            raise TokenStoreMissing(msg, path=str(self.path)) from None
        except OSError as exc:
            msg = f"Token store unreadable: {exc}"
            raise TokenStoreCorrupt(msg, path=str(self.path)) from exc

        try:
            return _deserialize_tokens(raw.decode("utf-8"))
        except ValueError as exc:  # includes UnicodeDecodeError
            msg = f"Token store is corrupt: {exc}"
            raise TokenStoreCorrupt(msg, path=str(self.path)) from exc

    def _delete_sync(self) -> None:
        """Unlink the token file if present."""
        try:
            self.path.unlink()
        except FileNotFoundError:
            return
        logger.info("Token store deleted: %s", self.path)
