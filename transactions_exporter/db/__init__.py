"""SQL storage for the capture session (SQLAlchemy).

Public exports
--------------
- ``Base`` and ``CaptureState`` ORM model
- ``SqlSlot``: a session slot stored in the ``capture_state`` table
"""

from __future__ import annotations

from .models import Base, CaptureState
from .slot import SqlSlot

metadata = Base.metadata

__all__ = [
    "Base",
    "metadata",
    "CaptureState",
    "SqlSlot",
]
