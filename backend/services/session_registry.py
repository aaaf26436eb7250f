"""
Session Registry

Durable list of known session ids, stored as a JSON array in
<SESSION_DIR>/sessions.json. Restored at startup so every session that
existed before a restart is reconnected.
"""

import json
import logging
import os
from typing import List

logger = logging.getLogger(__name__)

REGISTRY_FILENAME = "sessions.json"


class SessionRegistry:
    def __init__(self, session_dir: str):
        self.session_dir = session_dir
        self.path = os.path.join(session_dir, REGISTRY_FILENAME)

    def load(self) -> List[str]:
        """Return the persisted ids. A missing or unreadable file means no sessions."""
        if not os.path.exists(self.path):
            return []

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to read session registry {self.path}: {e}")
            return []

        if not isinstance(data, list):
            logger.warning(f"Session registry {self.path} is not a list, ignoring")
            return []

        # Preserve order, drop duplicates
        seen = set()
        ids = []
        for session_id in data:
            if isinstance(session_id, str) and session_id not in seen:
                seen.add(session_id)
                ids.append(session_id)
        return ids

    def save(self, session_ids: List[str]):
        """Replace the registry file with the given ids. Errors propagate."""
        os.makedirs(self.session_dir, exist_ok=True)
        tmp_path = f"{self.path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(list(session_ids), f, indent=2)
        os.replace(tmp_path, self.path)
        logger.debug(f"Saved {len(session_ids)} session(s) to registry")
