"""SQLAlchemy table definitions.

The store is document-shaped: one row per learner whose watchlist and quiz
results are JSONB arrays.  Repos convert between rows and the frozen
dataclasses in app/models/.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import BigInteger, Integer, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from app.db.engine import Base


class UserRecordRow(Base):
    __tablename__ = "user_records"

    user_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    # compare-and-swap token; bumped on every write
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    watchlist: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONB, nullable=False, default=list
    )
    quiz_results: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONB, nullable=False, default=list
    )
    updated_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
