from typing import Any, Optional

from sqlalchemy import JSON, Boolean, Integer, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from snapledger.models.versioning import (
    ChildHistoryMixin,
    ChildRecordMixin,
    CurrentRecordMixin,
    HistoryRecordMixin,
)
from snapledger.shared.db.base import Base


class _FirewallColumns:
    name: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    self_link: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    creation_timestamp: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    network: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=1000)
    direction: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    disabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    source_ranges_json: Mapped[Optional[Any]] = mapped_column(
        JSON(none_as_null=True).with_variant(JSONB(none_as_null=True), "postgresql"),
        nullable=True,
    )
    destination_ranges_json: Mapped[Optional[Any]] = mapped_column(
        JSON(none_as_null=True).with_variant(JSONB(none_as_null=True), "postgresql"),
        nullable=True,
    )
    source_tags_json: Mapped[Optional[Any]] = mapped_column(
        JSON(none_as_null=True).with_variant(JSONB(none_as_null=True), "postgresql"),
        nullable=True,
    )
    target_tags_json: Mapped[Optional[Any]] = mapped_column(
        JSON(none_as_null=True).with_variant(JSONB(none_as_null=True), "postgresql"),
        nullable=True,
    )
    source_service_accounts_json: Mapped[Optional[Any]] = mapped_column(
        JSON(none_as_null=True).with_variant(JSONB(none_as_null=True), "postgresql"),
        nullable=True,
    )
    target_service_accounts_json: Mapped[Optional[Any]] = mapped_column(
        JSON(none_as_null=True).with_variant(JSONB(none_as_null=True), "postgresql"),
        nullable=True,
    )
    log_config_json: Mapped[Optional[Any]] = mapped_column(
        JSON(none_as_null=True).with_variant(JSONB(none_as_null=True), "postgresql"),
        nullable=True,
    )

    # Collection metadata
    project_id: Mapped[str] = mapped_column(String, nullable=False, index=True)


class _RuleColumns:
    ip_protocol: Mapped[str] = mapped_column(String, nullable=False)
    ports_json: Mapped[Optional[Any]] = mapped_column(
        JSON(none_as_null=True).with_variant(JSONB(none_as_null=True), "postgresql"),
        nullable=True,
    )


class GcpComputeFirewall(_FirewallColumns, CurrentRecordMixin, Base):
    __tablename__ = "gcp_compute_firewalls"


class GcpComputeFirewallAllowed(_RuleColumns, ChildRecordMixin, Base):
    __tablename__ = "gcp_compute_firewall_allowed"
    __parent_table__ = "gcp_compute_firewalls"


class GcpComputeFirewallDenied(_RuleColumns, ChildRecordMixin, Base):
    __tablename__ = "gcp_compute_firewall_denied"
    __parent_table__ = "gcp_compute_firewalls"


class GcpComputeFirewallHistory(_FirewallColumns, HistoryRecordMixin, Base):
    __tablename__ = "gcp_compute_firewalls_history"


class GcpComputeFirewallAllowedHistory(_RuleColumns, ChildHistoryMixin, Base):
    __tablename__ = "gcp_compute_firewall_allowed_history"
    __parent_table__ = "gcp_compute_firewalls_history"


class GcpComputeFirewallDeniedHistory(_RuleColumns, ChildHistoryMixin, Base):
    __tablename__ = "gcp_compute_firewall_denied_history"
    __parent_table__ = "gcp_compute_firewalls_history"
