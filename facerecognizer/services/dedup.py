"""Dedup gate: content fingerprints and the already-processed check."""
import hashlib
from typing import Optional

import numpy as np

from facerecognizer.core.exceptions import DuplicateRegistrationError
from facerecognizer.core.logging import get_logger
from facerecognizer.domain.entities.face import SourceFile
from facerecognizer.domain.interfaces.storage.registry import IdentityRegistry
from facerecognizer.domain.value_objects.recognition import GateDecision

logger = get_logger(__name__)

DIGEST_SIZE = 32  # bytes, 256-bit BLAKE2b


class DedupGate:
    """Decides whether a file's content has been processed before.

    The fingerprint is taken over decoded pixels rather than file bytes, so
    the same picture stored in another lossless format is recognised.

    Example:
        ```python
        gate = DedupGate(registry)
        content_hash = gate.fingerprint(pixels)
        decision = await gate.check(content_hash, "photos/a.png", force=False)
        if not decision.skip:
            ...  # process, attaching faces to decision.file_id
        ```
    """

    def __init__(self, registry: IdentityRegistry) -> None:
        self._registry = registry

    @staticmethod
    def fingerprint(pixels: np.ndarray) -> bytes:
        """
        Hash decoded pixel data.

        The shape and dtype are part of the digest, so equal buffers with a
        different geometry do not collide.

        Args:
            pixels: Decoded image array

        Returns:
            32-byte BLAKE2b digest
        """
        digest = hashlib.blake2b(digest_size=DIGEST_SIZE)
        digest.update(f"{pixels.dtype.str}:{'x'.join(map(str, pixels.shape))}".encode("ascii"))
        digest.update(np.ascontiguousarray(pixels).tobytes())
        return digest.digest()

    async def find(self, content_hash: bytes) -> Optional[SourceFile]:
        """Get the most recent file record with this hash, if any."""
        return await self._registry.find_file(content_hash)

    async def register(self, content_hash: bytes, path: str) -> int:
        """
        Record new content and return its file id.

        When a concurrent task registered the same content first, the
        uniqueness violation is resolved to the winning row.
        """
        file_id, _ = await self._register(content_hash, path)
        return file_id

    async def _register(self, content_hash: bytes, path: str):
        try:
            return await self._registry.add_file(content_hash, path), True
        except DuplicateRegistrationError:
            existing = await self._registry.find_file(content_hash)
            if existing is None:
                raise
            logger.info(
                "Content registered concurrently, using existing record",
                path=path,
                file_id=existing.id,
                existing_path=existing.path
            )
            return existing.id, False

    async def check(self, content_hash: bytes, path: str, force: bool = False) -> GateDecision:
        """
        Decide whether to process a file.

        Args:
            content_hash: Fingerprint of the decoded content
            path: Path of the file being processed
            force: Process again even if the content was seen before

        Returns:
            GateDecision with the file row to attach faces to
        """
        existing = await self.find(content_hash)
        if existing is not None:
            if force:
                logger.info("Reprocessing known content", path=path, file_id=existing.id)
                return GateDecision(file_id=existing.id, skip=False, reason="forced")
            logger.info(
                "Content already processed, skipping",
                path=path,
                file_id=existing.id,
                processed_at=existing.processed_at.isoformat(),
                first_path=existing.path
            )
            return GateDecision(file_id=existing.id, skip=True, reason="already-processed")

        file_id, created = await self._register(content_hash, path)
        if created:
            return GateDecision(file_id=file_id, skip=False, reason="new")
        if force:
            return GateDecision(file_id=file_id, skip=False, reason="forced")
        return GateDecision(file_id=file_id, skip=True, reason="concurrent-duplicate")
