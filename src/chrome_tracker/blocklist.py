"""Persistent, normalized site blocklist."""

from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path
from typing import Iterable

from .normalization import matches, normalize_domain, normalize_domains, parse_domain_input

logger = logging.getLogger(__name__)


class PreferenceStore:
    """JSON-file key-value store for small string-list preferences."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def get_list(self, key: str) -> list[str]:
        with self._lock:
            data = self._read()
        value = data.get(key)
        if not isinstance(value, list):
            return []
        return [item for item in value if isinstance(item, str)]

    def set_list(self, key: str, values: Iterable[str]) -> None:
        with self._lock:
            data = self._read()
            data[key] = list(values)
            self._write(data)

    def _read(self) -> dict[str, object]:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Ignoring unreadable preferences file %s", self.path)
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: dict[str, object]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(".tmp")
        tmp.write_text(json.dumps(data, indent=2, sort_keys=True), encoding="utf-8")
        os.replace(tmp, self.path)


class BlocklistManager:
    """Owns the ordered, deduplicated list of blocked domain patterns."""

    def __init__(self, preferences: PreferenceStore, key: str) -> None:
        self._preferences = preferences
        self._key = key
        self._patterns = normalize_domains(preferences.get_list(key))

    @property
    def blocked_domains(self) -> list[str]:
        return list(self._patterns)

    def should_block(self, domain: str) -> bool:
        normalized = normalize_domain(domain)
        if not normalized or not self._patterns:
            return False
        return any(matches(normalized, pattern) for pattern in self._patterns)

    def set_blocked_domains(self, values: Iterable[str]) -> list[str]:
        self._patterns = normalize_domains(values)
        self._preferences.set_list(self._key, self._patterns)
        logger.info("Blocklist updated: %d entries", len(self._patterns))
        return self.blocked_domains

    def parse_and_set(self, text: str) -> list[str]:
        return self.set_blocked_domains(parse_domain_input(text))

    def add_blocked_domains(self, values: Iterable[str]) -> list[str]:
        return self.set_blocked_domains([*self._patterns, *values])

    def remove_blocked_domains(self, values: Iterable[str]) -> list[str]:
        removed = set(normalize_domains(values))
        return self.set_blocked_domains(p for p in self._patterns if p not in removed)
