"""
ALLOCATION INVARIANT ENGINE

Decides whether a proposed percentage for a payment type is admissible given
the beneficiaries already attached to it.

RULE:
- Vendor / SuperVendor candidates: total = SUM(others)
- Any other role:                   total = candidate.percentage + SUM(others)
- "others" skips the record identified by exclude_id (the record being updated)
- total > 100 is rejected
"""

from decimal import Decimal
from typing import Any, Iterable, Optional, Union
import logging

from core.errors import AllocationExceededError
from core.percentage_precision import FULL_ALLOCATION, sum_percentages, to_decimal
from models import RoleName

logger = logging.getLogger(__name__)

VARIABLE_SHARE_ROLES = frozenset({RoleName.VENDOR.value, RoleName.SUPER_VENDOR.value})


def is_variable_share_role(role: Optional[Union[str, RoleName]]) -> bool:
    """True for roles whose share is excluded from their own allocation check"""
    if isinstance(role, RoleName):
        role = role.value
    return role in VARIABLE_SHARE_ROLES


def _beneficiary_id(beneficiary: Any) -> Optional[str]:
    if isinstance(beneficiary, dict):
        value = beneficiary.get("_id", beneficiary.get("beneficiary_id"))
    else:
        value = getattr(beneficiary, "id", None)
    return str(value) if value is not None else None


def _beneficiary_percentage(beneficiary: Any):
    if isinstance(beneficiary, dict):
        return beneficiary.get("percentage", 0)
    return getattr(beneficiary, "percentage", 0)


def validate_allocation(
    existing_beneficiaries: Iterable[Any],
    percentage: Union[float, int, Decimal],
    role: Optional[Union[str, RoleName]],
    exclude_id: Optional[Any] = None
) -> Decimal:
    """
    Validate a candidate percentage against a payment type's beneficiaries.

    Args:
        existing_beneficiaries: Beneficiary documents (or objects with id/percentage)
            currently attached to the payment type
        percentage: Candidate's proposed percentage
        role: Candidate's role snapshot
        exclude_id: Id of the record being updated, left out of the sum

    Returns:
        The computed allocation total (Decimal)

    Raises:
        AllocationExceededError if the total exceeds 100
    """
    excluded = str(exclude_id) if exclude_id is not None else None

    others = sum_percentages(
        _beneficiary_percentage(b)
        for b in existing_beneficiaries
        if excluded is None or _beneficiary_id(b) != excluded
    )

    if is_variable_share_role(role):
        total = others
    else:
        total = others + to_decimal(percentage)

    if total > FULL_ALLOCATION:
        logger.warning(f"[ALLOCATION] Rejected: role={role}, percentage={percentage}, total={total}")
        raise AllocationExceededError(total)

    logger.debug(f"[ALLOCATION] Admissible: role={role}, percentage={percentage}, total={total}")
    return total
