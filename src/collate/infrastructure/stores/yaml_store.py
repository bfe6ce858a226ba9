"""
YAML Card Store — Infrastructure adapter for a local deck file.

Implements CardStore over a single YAML document:

    cards:
      - id: card_01
        question: ...
        answer: ...
        stats: {latest_rating: 4, rating_count: 2, ...}
    ratings:
      - id: 01J...
        card_id: card_01
        rating: 4
        timestamp: "2026-10-18T09:00:00+00:00"
"""

import logging
import os
import tempfile
from pathlib import Path
from typing import Any

import yaml

from collate.domain.errors import CardStoreError
from collate.domain.models import Card, CardStats, RatingEvent, StudyScope
from collate.domain.ports import CardStore

from .codec import (
    cards_from_records,
    event_to_dict,
    events_from_records,
    stats_to_dict,
)

logger = logging.getLogger(__name__)

_FLAT_STATS_KEYS = set(stats_to_dict(CardStats()))


class YamlCardStore(CardStore):
    """
    Reads and writes cards and rating history in a YAML file.

    Every write rewrites the whole document through a temporary file and an
    atomic rename, so a crash never leaves a half-written deck.
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    async def fetch_pool(self, scope: StudyScope) -> list[Card]:
        doc = self._load()
        cards = cards_from_records(doc.get("cards"))
        return [card for card in cards if scope.contains(card)]

    async def fetch_rating_events(self, scope: StudyScope) -> list[RatingEvent]:
        doc = self._load()
        events = events_from_records(doc.get("ratings"))
        if scope.kind == "all":
            return events
        in_scope = {c.id for c in cards_from_records(doc.get("cards")) if scope.contains(c)}
        return [e for e in events if e.card_id in in_scope]

    async def persist_rating_update(self, card_id: str, stats: CardStats) -> bool:
        try:
            doc = self._load()
            for record in doc.get("cards") or []:
                if isinstance(record, dict) and str(record.get("id")) == card_id:
                    for key in [k for k in record if k in _FLAT_STATS_KEYS]:
                        del record[key]
                    record["stats"] = stats_to_dict(stats)
                    break
            else:
                logger.warning(f"Cannot save stats: card {card_id} not in {self.path}")
                return False

            self._dump(doc)
            logger.debug(f"Saved stats for card {card_id}")
            return True
        except (CardStoreError, OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to save stats for card {card_id}: {e}")
            return False

    async def append_rating_event(self, event: RatingEvent) -> bool:
        try:
            doc = self._load()
            ratings = doc.get("ratings")
            if ratings is None:
                ratings = doc["ratings"] = []
            ratings.append(event_to_dict(event))
            self._dump(doc)
            return True
        except (CardStoreError, OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to append rating event {event.id}: {e}")
            return False

    async def is_responsive(self) -> bool:
        """A local deck is reachable when the file exists."""
        return self.path.is_file()

    def _load(self) -> dict[str, Any]:
        if not self.path.exists():
            raise CardStoreError(f"Deck file not found: {self.path}")
        try:
            with open(self.path, encoding="utf-8") as f:
                doc = yaml.safe_load(f) or {}
        except (yaml.YAMLError, UnicodeDecodeError) as e:
            raise CardStoreError(f"Invalid YAML in {self.path}: {e}") from e

        if not isinstance(doc, dict):
            raise CardStoreError(f"{self.path} must contain a mapping at the top level")
        return doc

    def _dump(self, doc: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                yaml.safe_dump(doc, f, sort_keys=False, allow_unicode=True)
            os.replace(tmp, self.path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise
