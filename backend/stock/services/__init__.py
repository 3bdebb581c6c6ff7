from .allocation_service import (
    AllocationResult,
    AllocationService,
    IntakeResult,
    SubstitutionResult,
    TransitionMetadata,
    TransitionResult,
)
from .fulfillment_service import FulfillmentService
from .ledger_service import LedgerService

__all__ = [
    'AllocationResult',
    'AllocationService',
    'FulfillmentService',
    'IntakeResult',
    'LedgerService',
    'SubstitutionResult',
    'TransitionMetadata',
    'TransitionResult',
]
