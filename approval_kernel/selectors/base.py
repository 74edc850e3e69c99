"""
Shared base for the read side of the kernel.

Selectors run queries on a session the caller owns and hand back frozen
DTOs.  They never add, delete, flush or commit.
"""

from abc import ABC

from sqlalchemy.orm import Session


class BaseSelector(ABC):
    """Holds the caller's session as ``self.session`` for subclass queries."""

    def __init__(self, session: Session):
        self.session = session
