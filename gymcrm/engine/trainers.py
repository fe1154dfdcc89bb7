"""
Trainer Directory
Static lookup of trainer name and WhatsApp number by email, loaded once per process.
"""

import json
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from gymcrm.config import config
from gymcrm.models import Trainer

logger = logging.getLogger(__name__)

FALLBACK_TRAINER_NAME = 'Your Coach'


class TrainerDirectory:
    """Case-insensitive email -> Trainer map. Never raises on unknown emails."""

    def __init__(self, trainers: Iterable[Trainer] = ()):
        self._by_email: Dict[str, Trainer] = {}
        for trainer in trainers:
            self._by_email[trainer.email.strip().lower()] = trainer

    def __len__(self) -> int:
        return len(self._by_email)

    def resolve(self, email: Optional[str]) -> Optional[Trainer]:
        if not email:
            return None
        return self._by_email.get(email.strip().lower())

    def name_for(self, email: Optional[str]) -> str:
        trainer = self.resolve(email)
        return trainer.name if trainer else FALLBACK_TRAINER_NAME

    def phone_for(self, email: Optional[str]) -> Optional[str]:
        trainer = self.resolve(email)
        return trainer.phone if trainer else None

    def all(self) -> List[Trainer]:
        return sorted(self._by_email.values(), key=lambda t: t.name.lower())


def load_trainers(path: Path) -> TrainerDirectory:
    """
    Read a JSON list of {"name", "email", "phone"} objects.
    A missing file gives an empty directory; every customer then sees the fallback name.
    """
    path = Path(path)
    if not path.exists():
        logger.warning(f"Trainer file {path} not found, trainer names fall back to '{FALLBACK_TRAINER_NAME}'")
        return TrainerDirectory()

    entries = json.loads(path.read_text(encoding='utf-8'))
    trainers = [
        Trainer(name=e['name'], email=e['email'], phone=e.get('phone') or None)
        for e in entries
        if e.get('email')
    ]
    logger.info(f"Loaded {len(trainers)} trainers from {path}")
    return TrainerDirectory(trainers)


_directory: Optional[TrainerDirectory] = None


def get_directory() -> TrainerDirectory:
    """Process-wide directory, loaded from TRAINERS_FILE on first use."""
    global _directory
    if _directory is None:
        _directory = load_trainers(Path(config.TRAINERS_FILE))
    return _directory
