"""
Model package initializer.

This module exists to make sure SQLAlchemy's registry is populated in any runtime
that uses the ORM (workers, scripts, tests) before tables are created or queried.
"""

# Import side-effects: register ORM mappings.
from snapledger.models import (  # noqa: F401
    gcp_compute_firewall,
    gcp_project_iam_policy,
)
