from typing import Any, Optional

from sqlalchemy import JSON, Integer, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from snapledger.models.versioning import (
    ChildHistoryMixin,
    ChildRecordMixin,
    CurrentRecordMixin,
    HistoryRecordMixin,
)
from snapledger.shared.db.base import Base


class _PolicyColumns:
    resource_name: Mapped[str] = mapped_column(String, nullable=False)
    etag: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    version: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    project_id: Mapped[str] = mapped_column(String, nullable=False, index=True)


class _BindingColumns:
    role: Mapped[str] = mapped_column(String, nullable=False)
    members_json: Mapped[Optional[Any]] = mapped_column(
        JSON(none_as_null=True).with_variant(JSONB(none_as_null=True), "postgresql"),
        nullable=True,
    )
    condition_json: Mapped[Optional[Any]] = mapped_column(
        JSON(none_as_null=True).with_variant(JSONB(none_as_null=True), "postgresql"),
        nullable=True,
    )


class GcpProjectIamPolicy(_PolicyColumns, CurrentRecordMixin, Base):
    __tablename__ = "gcp_project_iam_policies"


class GcpProjectIamPolicyBinding(_BindingColumns, ChildRecordMixin, Base):
    __tablename__ = "gcp_project_iam_policy_bindings"
    __parent_table__ = "gcp_project_iam_policies"


class GcpProjectIamPolicyHistory(_PolicyColumns, HistoryRecordMixin, Base):
    __tablename__ = "gcp_project_iam_policies_history"


class GcpProjectIamPolicyBindingHistory(_BindingColumns, ChildHistoryMixin, Base):
    __tablename__ = "gcp_project_iam_policy_bindings_history"
    __parent_table__ = "gcp_project_iam_policies_history"
