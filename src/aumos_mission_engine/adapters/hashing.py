"""SHA-256 hashing service. File reads run in a worker thread."""

import asyncio
import hashlib
from pathlib import Path

_CHUNK_SIZE = 1024 * 1024


def _hash_file(path: Path) -> str:
    digest = hashlib.sha256()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


class Sha256HashingService:
    """Lowercase-hex SHA-256 of files."""

    async def sha256_file(self, path: Path) -> str:
        return await asyncio.to_thread(_hash_file, path)
