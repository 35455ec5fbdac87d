"""Identity registry interface."""
from abc import ABC, abstractmethod
from typing import List, Optional

from ...entities.face import FaceEncoding, Rectangle, SourceFile
from ...value_objects.recognition import MatchResult, RegistryStats, SimilarFace


class IdentityRegistry(ABC):
    """Interface for persisting processed files and face observations.

    The registry is an append-only log: files are deduplicated by content
    hash, face locations, encodings and faces never are. Identities are not
    stored, they are computed on demand from encoding distances.
    """

    @abstractmethod
    async def initialize(self) -> None:
        """
        Prepare the backing store (create schema, load data).

        Raises:
            StorageError: If the store cannot be opened or migrated
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release connections and flush pending state."""
        pass

    @abstractmethod
    async def find_file(self, content_hash: bytes) -> Optional[SourceFile]:
        """
        Find the most recent processed file with the given content hash.

        Args:
            content_hash: Digest of the decoded image content

        Returns:
            The file record, or None if the content was never seen
        """
        pass

    @abstractmethod
    async def add_file(self, content_hash: bytes, path: str) -> int:
        """
        Record a processed file.

        Args:
            content_hash: Digest of the decoded image content
            path: Path the content was read from

        Returns:
            Identifier of the new file row

        Raises:
            DuplicateRegistrationError: If a row with the same hash already exists
            StorageError: If the insert fails
        """
        pass

    @abstractmethod
    async def add_location(self, rectangle: Rectangle) -> int:
        """Store a face location and return its identifier."""
        pass

    @abstractmethod
    async def add_encoding(self, encoding: FaceEncoding) -> int:
        """Store a face encoding and return its identifier."""
        pass

    @abstractmethod
    async def add_face(self, file_id: int, location_id: int, encoding_id: int) -> int:
        """Link a file, location and encoding and return the face identifier."""
        pass

    @abstractmethod
    async def match_or_register(self, encoding: FaceEncoding) -> MatchResult:
        """
        Match an encoding against every stored one, then store it.

        The nearest stored encoding is reported as a match when its distance
        is strictly below the match threshold. The encoding is stored either way.

        Args:
            encoding: Newly computed face encoding

        Returns:
            MatchResult with the new encoding id and the match, if any
        """
        pass

    @abstractmethod
    async def locate_similar(self, encoding_id: int, limit: int = 30) -> List[SimilarFace]:
        """
        Find the stored encodings closest to a stored encoding.

        Args:
            encoding_id: Identifier of the encoding to compare against
            limit: Maximum number of results

        Returns:
            Other encodings within the match threshold, nearest first

        Raises:
            EncodingNotFoundError: If the encoding does not exist
        """
        pass

    @abstractmethod
    async def get_encoding(self, encoding_id: int) -> FaceEncoding:
        """
        Load a stored encoding.

        Raises:
            EncodingNotFoundError: If the encoding does not exist
        """
        pass

    @abstractmethod
    async def stats(self) -> RegistryStats:
        """Count the stored rows."""
        pass
