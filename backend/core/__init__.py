"""
Beneficiary Allocation Core Modules
"""
from .errors import (
    BeneficiaryError,
    InvalidObjectIdError,
    NotFoundError,
    DuplicateExactError,
    DuplicateUserPaymentTypeError,
    AllocationExceededError,
    AllocationMismatchError,
    InvalidRosterError,
    ReferentialBlockError,
    StoreError
)

from .allocation_engine import (
    validate_allocation,
    is_variable_share_role
)

from .beneficiary_lifecycle import (
    BeneficiaryLifecycleManager,
    collapse_by_user
)

from .payment_type_roster import (
    PaymentTypeRoster,
    validate_roster_total
)

__all__ = [
    # Errors
    'BeneficiaryError',
    'InvalidObjectIdError',
    'NotFoundError',
    'DuplicateExactError',
    'DuplicateUserPaymentTypeError',
    'AllocationExceededError',
    'AllocationMismatchError',
    'InvalidRosterError',
    'ReferentialBlockError',
    'StoreError',
    # Allocation Engine
    'validate_allocation',
    'is_variable_share_role',
    # Lifecycle
    'BeneficiaryLifecycleManager',
    'collapse_by_user',
    # Roster
    'PaymentTypeRoster',
    'validate_roster_total',
]
