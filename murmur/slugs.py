"""
Slug allocation for groups.
"""

from __future__ import annotations

import logging
import re
from typing import Container

from murmur.db import SLUG_MAX_LENGTH, DbClient
from murmur.errors import StorageUnavailableError, ValidationError

logger = logging.getLogger(__name__)

_DISALLOWED = re.compile(r"[^a-z0-9-]")


def slugify(name: str) -> str:
    """Lowercase, spaces to hyphens, drop everything outside ``[a-z0-9-]``."""
    return _DISALLOWED.sub("", (name or "").lower().replace(" ", "-"))


class SlugAllocator:
    def __init__(self, db: DbClient):
        self.db = db

    def allocate(self, desired_name: str, skip: Container[str] = ()) -> str:
        """
        Return the first free slug among ``base``, ``base-1``, ``base-2``, ...

        The base is cut short so every candidate fits ``SLUG_MAX_LENGTH``.

        Slugs in ``skip`` are treated as taken; callers pass the ones that lost
        an insert race. The check is advisory: the unique index on the slug
        column is what guarantees uniqueness.
        """
        base = slugify(desired_name)[:SLUG_MAX_LENGTH]
        if not base:
            raise ValidationError(
                "Group name must contain at least one letter or digit",
                details={"name": desired_name},
            )

        candidate = base
        counter = 1
        while True:
            if candidate not in skip:
                try:
                    if self.db.is_slug_available(candidate):
                        return candidate
                except StorageUnavailableError:
                    logger.warning("Slug probe failed, accepting candidate %s", candidate)
                    return candidate
            suffix = f"-{counter}"
            candidate = base[: SLUG_MAX_LENGTH - len(suffix)].rstrip("-") + suffix
            counter += 1
