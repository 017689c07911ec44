"""
Local State Store - vozsmart.config.json Repository
====================================================

Reads and writes the update-state record that tracks the installed template
version. The same document is mirrored at the same path in the deployment's
GitHub repository, so parsing and serialization live here for both backends.
"""

import json
import logging
import os
import tempfile
from pathlib import Path

from src.domain.updates import InvalidStateError, LocalUpdateState, NotConfiguredError

logger = logging.getLogger(__name__)

STATE_FILE_NAME = "vozsmart.config.json"


def parse_state(text: str, source: str = STATE_FILE_NAME) -> LocalUpdateState:
    """Parse a state document. Raises InvalidStateError on bad JSON or shape."""
    try:
        data = json.loads(text)
        return LocalUpdateState.from_dict(data)
    except (json.JSONDecodeError, ValueError) as e:
        raise InvalidStateError(f"Invalid {source}: {e}") from e


def serialize_state(state: LocalUpdateState) -> str:
    """Serialize with two-space indentation, keeping the document's key order."""
    return json.dumps(state.to_dict(), indent=2, ensure_ascii=False)


class LocalStateStore:
    """
    File-backed store for LocalUpdateState.

    Usage:
        store = LocalStateStore(Path("/app/vozsmart.config.json"))
        state = store.load()
        store.save(state.bumped("1.2.0", "2026-01-01T00:00:00+00:00"))
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.is_file()

    def load(self) -> LocalUpdateState:
        """Load the record. Raises NotConfiguredError when the file is missing."""
        if not self.exists():
            raise NotConfiguredError(
                f"{self.path.name} not found. Updates are only available for configured instances."
            )
        try:
            text = self.path.read_text(encoding="utf-8")
        except OSError as e:
            raise InvalidStateError(f"Could not read {self.path.name}: {e}") from e
        return parse_state(text, source=self.path.name)

    def save(self, state: LocalUpdateState):
        """Replace the record atomically (temp file + rename)."""
        content = serialize_state(state)
        fd, tmp_name = tempfile.mkstemp(dir=str(self.path.parent), prefix=f".{self.path.name}.")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(content)
            os.replace(tmp_name, self.path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
        logger.info(f"Saved {self.path.name}: coreVersion={state.installed_version}")
