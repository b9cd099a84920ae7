"""
Bookkeeping columns shared by every versioned resource type.

Each resource type declares four kinds of tables:

- current: one row per ``resource_id`` with the latest attributes
- history: append-only versions bounded by ``valid_from``/``valid_to``
- child current: rows of a nested collection for the current record
- child history: versions of a nested collection, owned by one history row

Concrete models mix these in next to their own attribute columns.
"""

from datetime import datetime
from typing import Any, ClassVar, Optional

from sqlalchemy import ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, declared_attr, mapped_column

from snapledger.shared.db.base import UTCDateTime


class CurrentRecordMixin:
    resource_id: Mapped[str] = mapped_column(String, primary_key=True)
    collected_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, index=True
    )
    first_collected_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


class HistoryRecordMixin:
    history_id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True
    )
    resource_id: Mapped[str] = mapped_column(String, nullable=False)
    valid_from: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    # NULL means this is the open version.
    valid_to: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime, nullable=True, index=True
    )
    collected_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    first_collected_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    @declared_attr.directive
    def __table_args__(cls) -> tuple[Any, ...]:
        return (
            Index(
                f"ix_{cls.__tablename__}_resource_valid_from",  # type: ignore[attr-defined]
                "resource_id",
                "valid_from",
            ),
        )


class ChildRecordMixin:
    """Row of a nested collection belonging to a current record."""

    __parent_table__: ClassVar[str]

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    @declared_attr
    def parent_resource_id(cls) -> Mapped[str]:
        return mapped_column(
            ForeignKey(f"{cls.__parent_table__}.resource_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        )


class ChildHistoryMixin:
    """Versioned row of a nested collection, owned by one parent history row."""

    __parent_table__: ClassVar[str]

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    valid_from: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    valid_to: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime, nullable=True, index=True
    )

    @declared_attr
    def parent_history_id(cls) -> Mapped[int]:
        return mapped_column(
            ForeignKey(f"{cls.__parent_table__}.history_id"),
            nullable=False,
            index=True,
        )
