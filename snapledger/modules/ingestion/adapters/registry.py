from snapledger.modules.ingestion.adapters.gcp.firewall import (
    FIREWALL_CONTRACT,
    convert_firewall,
)
from snapledger.modules.ingestion.adapters.gcp.project_iam_policy import (
    PROJECT_IAM_POLICY_CONTRACT,
    convert_project_iam_policy,
)
from snapledger.modules.ingestion.domain.contract import ResourceContract
from snapledger.modules.ingestion.domain.service import Converter
from snapledger.shared.core.exceptions import SnapshotContractError

CONTRACTS: dict[str, ResourceContract] = {
    FIREWALL_CONTRACT.resource_type: FIREWALL_CONTRACT,
    PROJECT_IAM_POLICY_CONTRACT.resource_type: PROJECT_IAM_POLICY_CONTRACT,
}

CONVERTERS: dict[str, Converter] = {
    FIREWALL_CONTRACT.resource_type: convert_firewall,
    PROJECT_IAM_POLICY_CONTRACT.resource_type: convert_project_iam_policy,
}


def get_adapter(resource_type: str) -> tuple[ResourceContract, Converter]:
    """Return the contract and converter registered for ``resource_type``."""
    try:
        return CONTRACTS[resource_type], CONVERTERS[resource_type]
    except KeyError as exc:
        raise SnapshotContractError(
            f"No adapter registered for resource type '{resource_type}'",
            details={"resource_type": resource_type, "known": sorted(CONTRACTS)},
        ) from exc


def registered_types() -> list[str]:
    return sorted(CONTRACTS)


__all__ = ["CONTRACTS", "CONVERTERS", "get_adapter", "registered_types"]
