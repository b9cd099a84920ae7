"""
GCP Compute firewall rules.

Raw items are the Compute REST representation of a firewall
(``compute.firewalls.list``). Allowed and denied rules are nested collections
without ids of their own, versioned as child rows keyed by protocol and ports.
"""

from datetime import datetime
from typing import Any, Mapping, Optional

from snapledger.models.gcp_compute_firewall import (
    GcpComputeFirewall,
    GcpComputeFirewallAllowed,
    GcpComputeFirewallAllowedHistory,
    GcpComputeFirewallDenied,
    GcpComputeFirewallDeniedHistory,
    GcpComputeFirewallHistory,
)
from snapledger.modules.ingestion.domain.contract import ChildCollection, ResourceContract
from snapledger.modules.ingestion.domain.snapshot import CanonicalSnapshot, normalize_blob
from snapledger.shared.core.exceptions import SnapshotConversionError

RESOURCE_TYPE = "gcp.compute.firewall"

DEFAULT_PRIORITY = 1000

_RULE_FIELDS = ("ip_protocol", "ports_json")

# REST key -> blob column. Absent keys stay NULL rather than an empty list.
_BLOB_KEYS = {
    "sourceRanges": "source_ranges_json",
    "destinationRanges": "destination_ranges_json",
    "sourceTags": "source_tags_json",
    "targetTags": "target_tags_json",
    "sourceServiceAccounts": "source_service_accounts_json",
    "targetServiceAccounts": "target_service_accounts_json",
    "logConfig": "log_config_json",
}

FIREWALL_CONTRACT = ResourceContract(
    resource_type=RESOURCE_TYPE,
    current_model=GcpComputeFirewall,
    history_model=GcpComputeFirewallHistory,
    scalar_fields=(
        "name",
        "description",
        "self_link",
        "creation_timestamp",
        "network",
        "priority",
        "direction",
        "disabled",
        "project_id",
    ),
    blob_fields=tuple(_BLOB_KEYS.values()),
    scope_fields=("project_id",),
    children=(
        ChildCollection(
            name="allowed",
            current_model=GcpComputeFirewallAllowed,
            history_model=GcpComputeFirewallAllowedHistory,
            fields=_RULE_FIELDS,
            blob_fields=("ports_json",),
            key_fields=_RULE_FIELDS,
        ),
        ChildCollection(
            name="denied",
            current_model=GcpComputeFirewallDenied,
            history_model=GcpComputeFirewallDeniedHistory,
            fields=_RULE_FIELDS,
            blob_fields=("ports_json",),
            key_fields=_RULE_FIELDS,
        ),
    ),
)


def _convert_rules(rules: Optional[list[Mapping[str, Any]]]) -> list[dict[str, Any]]:
    return [
        {
            "ip_protocol": rule.get("IPProtocol", ""),
            "ports_json": normalize_blob(rule.get("ports")),
        }
        for rule in rules or []
    ]


def convert_firewall(
    raw: Mapping[str, Any], scope: Mapping[str, Any], collected_at: datetime
) -> CanonicalSnapshot:
    firewall_id = raw.get("id")
    if firewall_id in (None, ""):
        raise SnapshotConversionError(
            f"Firewall {raw.get('name')!r} has no id",
            details={"name": raw.get("name")},
        )
    project_id = scope.get("project_id")
    if not project_id:
        raise SnapshotConversionError("Firewall scope is missing project_id")

    try:
        priority = int(raw.get("priority", DEFAULT_PRIORITY))
    except (TypeError, ValueError) as exc:
        raise SnapshotConversionError(
            f"Firewall {firewall_id} has a non-numeric priority {raw.get('priority')!r}",
            details={"resource_id": str(firewall_id)},
        ) from exc

    attributes: dict[str, Any] = {
        "name": raw.get("name", ""),
        "description": raw.get("description"),
        "self_link": raw.get("selfLink"),
        "creation_timestamp": raw.get("creationTimestamp"),
        "network": raw.get("network"),
        "priority": priority,
        "direction": raw.get("direction"),
        "disabled": bool(raw.get("disabled", False)),
        "project_id": project_id,
    }
    for key, column in _BLOB_KEYS.items():
        attributes[column] = normalize_blob(raw.get(key))

    return CanonicalSnapshot(
        resource_id=str(firewall_id),
        attributes=attributes,
        collected_at=collected_at,
        children={
            "allowed": _convert_rules(raw.get("allowed")),
            "denied": _convert_rules(raw.get("denied")),
        },
    )
