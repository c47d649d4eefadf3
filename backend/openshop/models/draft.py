"""Device-scoped draft slot.

One row per draft key (one per device).  The payload is the serialized
Draft (wizard state + owner + savedAt); ownership is enforced by the
DraftStore on read, not by the table.
"""

from datetime import datetime

from sqlalchemy import DateTime, JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from openshop.database import DraftBase


class DraftSlot(DraftBase):
    __tablename__ = "draft_slots"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    payload: Mapped[dict] = mapped_column(JSON)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )
