"""JSON file storage for emergency contacts."""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import List, Union

from .registry import EmergencyContact

logger = logging.getLogger(__name__)


class JsonContactStore:
    """
    Stores the contact set as a JSON array, one object per contact.

    Writes go to a temporary file that replaces the target, so a failed write
    never leaves a truncated file behind.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def save(self, contacts: List[EmergencyContact]) -> None:
        """Write all contacts. Raises OSError on I/O failure."""
        data = [contact.to_dict() for contact in contacts]
        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=".contacts-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_path, self.path)
        except OSError:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

        logger.debug(f"[CONTACTS] Saved {len(contacts)} contact(s) to {self.path}")

    def load(self) -> List[EmergencyContact]:
        """
        Read all contacts. A missing or unreadable file means no contacts yet.

        Records that cannot be parsed are skipped and logged; the rest load.
        """
        if not self.path.exists():
            logger.info(f"[CONTACTS] No contact file at {self.path}, starting empty")
            return []

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"[CONTACTS] Could not read {self.path}, starting empty: {e}")
            return []

        if not isinstance(data, list):
            logger.warning(f"[CONTACTS] {self.path} does not hold a contact list, starting empty")
            return []

        contacts = []
        for index, item in enumerate(data):
            try:
                contacts.append(EmergencyContact.from_dict(item))
            except (KeyError, ValueError, TypeError) as e:
                logger.warning(f"[CONTACTS] Skipping unreadable contact #{index} in {self.path}: {e}")

        return contacts
