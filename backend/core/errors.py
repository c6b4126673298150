"""
BENEFICIARY ALLOCATION - ERROR TAXONOMY

Every domain failure raised inside a beneficiary transaction derives from
BeneficiaryError. The message text is part of the public contract and is
returned to clients verbatim.
"""

from typing import Optional


class BeneficiaryError(Exception):
    """Base class for domain errors surfaced to API clients"""

    status_code = 500

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class InvalidObjectIdError(BeneficiaryError):
    """Raised when a path or body id is not a valid ObjectId"""

    status_code = 400

    def __init__(self, field: str, value):
        self.field = field
        self.value = value
        super().__init__(f"Invalid {field}", details={"field": field, "value": value})


class NotFoundError(BeneficiaryError):
    """Raised when a User, PaymentType or Beneficiary is missing"""

    status_code = 404

    def __init__(self, entity: str, message: Optional[str] = None, entity_id: Optional[str] = None):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(
            message or f"{entity} not found",
            details={"entity": entity, "entity_id": entity_id}
        )


class DuplicateExactError(BeneficiaryError):
    """Raised when a beneficiary with the same user, percentage and payment type exists"""

    status_code = 409


class DuplicateUserPaymentTypeError(BeneficiaryError):
    """Raised when the user already holds a share on the payment type"""

    status_code = 409


class AllocationExceededError(BeneficiaryError):
    """Raised when a payment type's allocation total would exceed 100%"""

    status_code = 422

    def __init__(self, total, message: str = "Total percentage of beneficiaries cannot exceed 100%"):
        self.total = total
        super().__init__(message, details={"total": str(total)})


class AllocationMismatchError(BeneficiaryError):
    """Raised when a payment type roster does not sum to exactly 100%"""

    status_code = 422

    def __init__(self, total):
        self.total = total
        super().__init__(
            f"Total percentage of beneficiaries must be exactly 100%. Current total: {total}",
            details={"total": str(total)}
        )


class ReferentialBlockError(BeneficiaryError):
    """Raised when deleting a beneficiary still listed on a payment type"""

    status_code = 409

    def __init__(self, beneficiary_id: str, payment_type_ids=None):
        self.beneficiary_id = beneficiary_id
        self.payment_type_ids = payment_type_ids or []
        super().__init__(
            "Beneficiary is still attached to a payment type and cannot be deleted",
            details={
                "beneficiary_id": beneficiary_id,
                "payment_type_ids": self.payment_type_ids
            }
        )


class StoreError(BeneficiaryError):
    """Raised when the underlying MongoDB transaction fails"""

    status_code = 503


class InvalidRosterError(BeneficiaryError):
    """Raised when a roster repeats a beneficiary or lists one from another payment type"""

    status_code = 422
