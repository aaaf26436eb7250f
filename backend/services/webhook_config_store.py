"""
Webhook Configuration Store

Per-session webhook configuration persisted as a JSON object keyed by
session id in <SESSION_DIR>/webhook-configs.json:

    {"sales": {"webhookUrl": "https://...", "events": ["messages.upsert"]}}

An empty events list subscribes the session to every event.
"""

import copy
import json
import logging
import os
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "webhook-configs.json"


class WebhookConfigStore:
    def __init__(self, session_dir: str):
        self.session_dir = session_dir
        self.path = os.path.join(session_dir, CONFIG_FILENAME)
        self._configs: Dict[str, dict] = self._load()

    def _load(self) -> Dict[str, dict]:
        if not os.path.exists(self.path):
            return {}

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to read webhook configs {self.path}: {e}")
            return {}

        if not isinstance(data, dict):
            logger.warning(f"Webhook config file {self.path} is not an object, ignoring")
            return {}

        configs = {}
        for session_id, config in data.items():
            if not isinstance(config, dict) or not config.get("webhookUrl"):
                continue
            configs[session_id] = {
                "webhookUrl": config["webhookUrl"],
                "events": list(config.get("events") or []),
            }
        logger.info(f"Loaded {len(configs)} webhook config(s)")
        return configs

    def _save(self):
        os.makedirs(self.session_dir, exist_ok=True)
        tmp_path = f"{self.path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(self._configs, f, indent=2)
        os.replace(tmp_path, self.path)

    def get(self, session_id: str) -> Optional[dict]:
        config = self._configs.get(session_id)
        return copy.deepcopy(config) if config else None

    def all(self) -> Dict[str, dict]:
        return copy.deepcopy(self._configs)

    def set(self, session_id: str, webhook_url: str, events: List[str]):
        """Store and persist. Persistence errors propagate to the caller."""
        self._configs[session_id] = {"webhookUrl": webhook_url, "events": list(events)}
        self._save()

    def remove(self, session_id: str) -> bool:
        if session_id not in self._configs:
            return False
        del self._configs[session_id]
        self._save()
        return True
