"""Names for known faces, keyed by encoding id.

The file has one ``<encoding-id>|<name>`` entry per line; blank lines and
lines starting with ``#`` are ignored.
"""
from pathlib import Path
from typing import Dict, Optional

from facerecognizer.core.exceptions import ConfigurationError
from facerecognizer.core.logging import get_logger

logger = get_logger(__name__)


class NameDirectory:
    """Maps encoding ids to the name of the person they show."""

    def __init__(self, names: Optional[Dict[int, str]] = None) -> None:
        self._names = dict(names or {})

    def __len__(self) -> int:
        return len(self._names)

    def lookup(self, encoding_id: Optional[int]) -> Optional[str]:
        if encoding_id is None:
            return None
        return self._names.get(encoding_id)

    @classmethod
    def load(cls, path: Path) -> "NameDirectory":
        """
        Read a names file.

        Raises:
            ConfigurationError: If the file is missing or a line is malformed
        """
        try:
            content = Path(path).read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigurationError(f"Failed to read names file: {e}", details={"path": str(path)}) from e

        names: Dict[int, str] = {}
        for line_number, raw_line in enumerate(content.splitlines(), start=1):
            line = raw_line.strip()
            if not line or line.startswith("#"):
                continue
            encoding_id, sep, name = line.partition("|")
            name = name.strip()
            if not sep or not name or not encoding_id.strip().isdigit():
                raise ConfigurationError(
                    f"Malformed names entry on line {line_number}: {raw_line!r}",
                    details={"path": str(path), "line": line_number}
                )
            names[int(encoding_id)] = name

        logger.info("Loaded known names", path=str(path), count=len(names))
        return cls(names)
