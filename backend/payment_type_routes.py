# Payment Type Roster Endpoints
#
# Mounted by server.py:
# payment_type_router = create_payment_type_routes(client, db, audit_service)
# app.include_router(payment_type_router, prefix=API_PREFIX)

from fastapi import APIRouter, Depends
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from typing import Optional

from audit_service import AuditService
from auth import get_actor_id
from core.ledger_store import serialize_doc
from core.payment_type_roster import PaymentTypeRoster
from models import PaymentTypeBeneficiariesUpdate


def create_payment_type_routes(
    client: AsyncIOMotorClient,
    db: AsyncIOMotorDatabase,
    audit_service: Optional[AuditService] = None
) -> APIRouter:
    router = APIRouter(tags=["Payment Types"])
    roster = PaymentTypeRoster(client, db, audit_service)

    @router.get("/payment-types/{payment_type_id}/beneficiaries")
    async def get_payment_type_beneficiaries(payment_type_id: str, validate: bool = True):
        """Beneficiaries and shares of a payment type; validate=true requires a 100% total"""
        entries = await roster.get_beneficiaries_by_payment_type(payment_type_id, validate=validate)
        return {"success": True, "data": [serialize_doc(entry) for entry in entries]}

    @router.put("/payment-types/{payment_type_id}/beneficiaries")
    async def set_payment_type_beneficiaries(
        payment_type_id: str,
        data: PaymentTypeBeneficiariesUpdate,
        actor_id: Optional[str] = Depends(get_actor_id)
    ):
        """Replace the roster; the listed beneficiaries must add up to exactly 100%"""
        result = await roster.set_beneficiaries(payment_type_id, data.beneficiaries, actor_id=actor_id)
        return {
            "success": True,
            "message": "Payment Type beneficiaries updated successfully",
            "data": result
        }

    return router
