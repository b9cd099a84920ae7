"""
GCP project IAM policies.

One policy per project (``projects.getIamPolicy``), keyed as
``projects/<project_id>``. Bindings carry no id and are compared on their
whole content: role, members and condition.
"""

from datetime import datetime
from typing import Any, Mapping

from snapledger.models.gcp_project_iam_policy import (
    GcpProjectIamPolicy,
    GcpProjectIamPolicyBinding,
    GcpProjectIamPolicyBindingHistory,
    GcpProjectIamPolicyHistory,
)
from snapledger.modules.ingestion.domain.contract import ChildCollection, ResourceContract
from snapledger.modules.ingestion.domain.snapshot import CanonicalSnapshot, normalize_blob
from snapledger.shared.core.exceptions import SnapshotConversionError

RESOURCE_TYPE = "gcp.resourcemanager.project_iam_policy"

PROJECT_IAM_POLICY_CONTRACT = ResourceContract(
    resource_type=RESOURCE_TYPE,
    current_model=GcpProjectIamPolicy,
    history_model=GcpProjectIamPolicyHistory,
    scalar_fields=("resource_name", "etag", "version", "project_id"),
    scope_fields=("project_id",),
    children=(
        ChildCollection(
            name="bindings",
            current_model=GcpProjectIamPolicyBinding,
            history_model=GcpProjectIamPolicyBindingHistory,
            fields=("role", "members_json", "condition_json"),
            blob_fields=("members_json", "condition_json"),
        ),
    ),
)


def convert_project_iam_policy(
    raw: Mapping[str, Any], scope: Mapping[str, Any], collected_at: datetime
) -> CanonicalSnapshot:
    # The policy payload does not name its project; the scope does.
    project_id = raw.get("projectId") or scope.get("project_id")
    if not project_id:
        raise SnapshotConversionError("IAM policy has no project_id")
    resource_id = f"projects/{project_id}"

    version = raw.get("version")
    bindings = []
    for binding in raw.get("bindings") or []:
        role = binding.get("role")
        if not role:
            raise SnapshotConversionError(
                f"IAM binding without role in {resource_id}",
                details={"resource_id": resource_id},
            )
        bindings.append(
            {
                "role": role,
                "members_json": normalize_blob(binding.get("members")),
                "condition_json": normalize_blob(binding.get("condition")),
            }
        )

    return CanonicalSnapshot(
        resource_id=resource_id,
        attributes={
            "resource_name": raw.get("resourceName") or resource_id,
            # Empty etag and version 0 mean "not set".
            "etag": raw.get("etag") or None,
            "version": int(version) if version else None,
            "project_id": project_id,
        },
        collected_at=collected_at,
        children={"bindings": bindings},
    )
