"""Tenant provisioning: slug, ledger, readiness, cleanup, rollback, coordinator."""

from .cleanup import CleanupEntry, CleanupOutcome, CleanupReport, PreflightCleaner
from .coordinator import (
    STEP_SEQUENCE,
    OrchestrationResult,
    ProvisioningCoordinator,
    VerificationPolicy,
    describe_sequence,
)
from .models import ProvisioningRequest, ResourceKind, StepKind
from .protocols import Provisioners
from .readiness import (
    ProbeResult,
    ProbeState,
    ReadinessVerifier,
    VerificationOutcome,
)
from .registry import DuplicateResourceError, ResourceRegistry
from .rollback import RollbackEngine, RollbackEntry, RollbackReport
from .slug import SLUG_MAX_LENGTH, resolve_slug, resource_name
from .steps import (
    ALLOWED_TRANSITIONS,
    InvalidStepTransition,
    StepDefinition,
    StepLedger,
    StepRecord,
    StepStatus,
)

__all__ = [
    'ALLOWED_TRANSITIONS',
    'CleanupEntry',
    'CleanupOutcome',
    'CleanupReport',
    'DuplicateResourceError',
    'InvalidStepTransition',
    'OrchestrationResult',
    'PreflightCleaner',
    'ProbeResult',
    'ProbeState',
    'Provisioners',
    'ProvisioningCoordinator',
    'ProvisioningRequest',
    'ReadinessVerifier',
    'ResourceKind',
    'ResourceRegistry',
    'RollbackEngine',
    'RollbackEntry',
    'RollbackReport',
    'SLUG_MAX_LENGTH',
    'STEP_SEQUENCE',
    'StepDefinition',
    'StepKind',
    'StepLedger',
    'StepRecord',
    'StepStatus',
    'VerificationOutcome',
    'VerificationPolicy',
    'describe_sequence',
    'resolve_slug',
    'resource_name',
]
