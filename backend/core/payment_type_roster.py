"""
PAYMENT TYPE ROSTER

A payment type's roster is the list of beneficiary ids that collected
payments are split across. Unlike the per-beneficiary allocation check
(total must not exceed 100), a roster must add up to exactly 100%.
"""

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional
import logging

from audit_service import AuditService, PAYMENT_TYPE_ENTITY
from core.errors import AllocationMismatchError, InvalidRosterError, NotFoundError
from core.ledger_store import (
    PAYMENT_TYPES, BENEFICIARIES,
    run_in_transaction, lock_payment_type, lock_beneficiary, to_object_id
)
from core.percentage_precision import FULL_ALLOCATION, sum_percentages, to_float
from models import RosterEntry

logger = logging.getLogger(__name__)


def validate_roster_total(beneficiaries: Iterable[Dict[str, Any]]) -> Decimal:
    """
    Require the roster percentages to sum to exactly 100.
    Raises AllocationMismatchError otherwise.
    """
    total = sum_percentages(b.get("percentage", 0) for b in beneficiaries)
    if total != FULL_ALLOCATION:
        raise AllocationMismatchError(to_float(total))
    return total


class PaymentTypeRoster:
    """Read and replace the beneficiary roster of a payment type"""

    def __init__(
        self,
        client: AsyncIOMotorClient,
        db: AsyncIOMotorDatabase,
        audit_service: Optional[AuditService] = None
    ):
        self.client = client
        self.db = db
        self.audit_service = audit_service

    async def get_beneficiaries_by_payment_type(
        self,
        payment_type_id: str,
        validate: bool = True,
        session=None
    ) -> List[Dict[str, Any]]:
        """
        Beneficiaries attached to a payment type with their shares.

        Raises NotFoundError when the payment type or its beneficiaries are
        missing, AllocationMismatchError when validate is set and the shares
        do not add up to 100.
        """
        oid = to_object_id(payment_type_id, "payment type ID")

        payment_type = await self.db[PAYMENT_TYPES].find_one({"_id": oid}, session=session)
        if not payment_type:
            raise NotFoundError("PaymentType", "Payment type not found", payment_type_id)

        beneficiaries = await self.db[BENEFICIARIES].find(
            {"payment_type_id": oid},
            session=session
        ).to_list(length=None)
        if not beneficiaries:
            raise NotFoundError("Beneficiary", "No beneficiaries found for the payment type", payment_type_id)

        if validate:
            validate_roster_total(beneficiaries)

        return [
            {
                "user_id": b.get("user_id"),
                "percentage": b.get("percentage"),
                "payment_type_id": b.get("payment_type_id"),
                "role": b.get("role")
            }
            for b in beneficiaries
        ]

    async def set_beneficiaries(
        self,
        payment_type_id: str,
        beneficiary_ids: List[str],
        actor_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Replace a payment type's roster.

        TRANSACTION:
        1. Lock payment type
        2. Claim every listed beneficiary
        3. Reject repeated ids and beneficiaries of other payment types
        4. Require an exact 100% total
        5. Store roster and audit
        """
        payment_type_oid = to_object_id(payment_type_id, "payment type ID")
        beneficiary_oids = [to_object_id(b, "beneficiary ID") for b in beneficiary_ids]

        seen = set()
        for oid in beneficiary_oids:
            if oid in seen:
                raise InvalidRosterError(
                    f"Beneficiary listed more than once: {oid}",
                    details={"beneficiary_id": str(oid)}
                )
            seen.add(oid)

        async def _set(session):
            payment_type = await lock_payment_type(self.db, payment_type_oid, session=session)
            if not payment_type:
                raise NotFoundError("PaymentType", "Payment type not found", payment_type_id)

            resolved = []
            for oid in beneficiary_oids:
                beneficiary = await lock_beneficiary(self.db, oid, session=session)
                if not beneficiary:
                    raise NotFoundError("Beneficiary", f"Beneficiary not found with ID: {oid}", str(oid))
                if beneficiary.get("payment_type_id") != payment_type_oid:
                    raise InvalidRosterError(
                        f"Beneficiary {oid} does not belong to this payment type",
                        details={
                            "beneficiary_id": str(oid),
                            "payment_type_id": str(beneficiary.get("payment_type_id"))
                        }
                    )
                resolved.append(beneficiary)

            total = validate_roster_total(resolved)

            await self.db[PAYMENT_TYPES].update_one(
                {"_id": payment_type_oid},
                {"$set": {"beneficiaries": beneficiary_oids}},
                session=session
            )

            roster = [
                RosterEntry(beneficiary_id=str(b["_id"]), percentage=b["percentage"]).dict()
                for b in resolved
            ]
            if self.audit_service is not None:
                await self.audit_service.log_action(
                    entity_type=PAYMENT_TYPE_ENTITY,
                    entity_id=str(payment_type_oid),
                    action_type="ROSTER_UPDATE",
                    user_id=actor_id,
                    old_value={"beneficiaries": [str(b) for b in payment_type.get("beneficiaries", [])]},
                    new_value={"beneficiaries": roster},
                    session=session
                )
            logger.info(f"Payment type {payment_type_oid} roster set: {len(roster)} beneficiaries, total={total}")

            return {
                "payment_type_id": str(payment_type_oid),
                "beneficiaries": roster,
                "total": to_float(total)
            }

        return await run_in_transaction(self.client, _set)
