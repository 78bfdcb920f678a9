"""
Domain models — Pydantic types for the provisioner.

All models are re-exported here for convenient access:

    from provisioner.core.models import DescriptorSet, ServiceDescriptor, ProvisioningRun
"""

from provisioner.core.models.descriptor import (
    BackendSpec,
    DescriptorSet,
    HealthCheck,
    HttpProbe,
    InstallAction,
    NetworkCheck,
    OsRequirement,
    RestartPolicy,
    ServiceDescriptor,
    TargetRequirements,
    UnitSpec,
)
from provisioner.core.models.receipt import Receipt
from provisioner.core.models.run import (
    CheckResult,
    ProvisioningRun,
    ServiceResult,
    ServiceStatus,
    TargetInfo,
)

__all__ = [
    # descriptor.py
    "BackendSpec",
    "DescriptorSet",
    "HealthCheck",
    "HttpProbe",
    "InstallAction",
    "NetworkCheck",
    "OsRequirement",
    "RestartPolicy",
    "ServiceDescriptor",
    "TargetRequirements",
    "UnitSpec",
    # receipt.py
    "Receipt",
    # run.py
    "CheckResult",
    "ProvisioningRun",
    "ServiceResult",
    "ServiceStatus",
    "TargetInfo",
]
