# Beneficiary API Endpoints
#
# Mounted by server.py:
# beneficiary_router = create_beneficiary_routes(client, db, audit_service)
# app.include_router(beneficiary_router, prefix=API_PREFIX)
#
# Domain errors raised by the lifecycle manager are converted to
# {success: false, message} responses by the handlers registered in server.py.

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from typing import Optional

from audit_service import AuditService
from auth import get_actor_id
from core.beneficiary_lifecycle import BeneficiaryLifecycleManager
from core.errors import NotFoundError
from core.ledger_store import serialize_doc
from models import BeneficiaryCreate, BeneficiaryUpdate


def serialize_beneficiary(doc):
    return serialize_doc(doc, "beneficiary_id")


def create_beneficiary_routes(
    client: AsyncIOMotorClient,
    db: AsyncIOMotorDatabase,
    audit_service: Optional[AuditService] = None
) -> APIRouter:
    """Create beneficiary router with all lifecycle endpoints"""

    router = APIRouter(tags=["Beneficiaries"])
    manager = BeneficiaryLifecycleManager(client, db, audit_service)

    @router.post("/beneficiaries", status_code=status.HTTP_201_CREATED)
    @router.post("/beneficiary", status_code=status.HTTP_201_CREATED, include_in_schema=False)
    async def create_beneficiary(
        data: BeneficiaryCreate,
        actor_id: Optional[str] = Depends(get_actor_id)
    ):
        """
        Create a beneficiary.
        Rejects duplicates and any share that would push the payment type past 100%.
        """
        beneficiary = await manager.create(data, created_by=actor_id)
        return {
            "success": True,
            "message": "Beneficiary created successfully",
            "data": serialize_beneficiary(beneficiary)
        }

    @router.get("/beneficiaries")
    async def get_beneficiaries(
        user_id: Optional[str] = Query(default=None, alias="userId"),
        percentage: Optional[float] = Query(default=None),
        payment_type_id: Optional[str] = Query(default=None, alias="paymentTypeId"),
        page: Optional[str] = Query(default=None),
        limit: Optional[str] = Query(default=None)
    ):
        """List beneficiaries, one row per user on each page"""
        rows, pagination = await manager.list_beneficiaries(
            user_id=user_id,
            percentage=percentage,
            payment_type_id=payment_type_id,
            page=page,
            limit=limit
        )
        return {
            "success": True,
            "data": [serialize_beneficiary(row) for row in rows],
            "pagination": pagination
        }

    @router.get("/beneficiaries/{beneficiary_id}")
    async def get_beneficiary(beneficiary_id: str):
        """Get beneficiary by id"""
        try:
            beneficiary = await manager.get_beneficiary(beneficiary_id)
        except NotFoundError as e:
            return JSONResponse(
                status_code=status.HTTP_404_NOT_FOUND,
                content={"success": False, "message": e.message}
            )
        return {"success": True, "data": serialize_beneficiary(beneficiary)}

    @router.patch("/beneficiaries/{beneficiary_id}")
    async def update_beneficiary(
        beneficiary_id: str,
        data: BeneficiaryUpdate,
        actor_id: Optional[str] = Depends(get_actor_id)
    ):
        """Partially update a beneficiary; the allocation is re-checked excluding its old share"""
        beneficiary = await manager.update(beneficiary_id, data, actor_id=actor_id)
        return {
            "success": True,
            "message": "Beneficiary updated successfully",
            "data": serialize_beneficiary(beneficiary)
        }

    @router.post("/beneficiaries/remove/{beneficiary_id}")
    async def remove_beneficiary_from_payment_type(
        beneficiary_id: str,
        actor_id: Optional[str] = Depends(get_actor_id)
    ):
        """Detach a beneficiary from its payment type and every roster"""
        beneficiary = await manager.remove_from_payment_type(beneficiary_id, actor_id=actor_id)
        return {
            "success": True,
            "message": "Beneficiary removed from payment type successfully",
            "data": serialize_beneficiary(beneficiary)
        }

    @router.delete("/beneficiaries/{beneficiary_id}")
    async def delete_beneficiary(
        beneficiary_id: str,
        actor_id: Optional[str] = Depends(get_actor_id)
    ):
        """Delete a beneficiary no payment type roster still lists"""
        beneficiary = await manager.delete(beneficiary_id, actor_id=actor_id)
        return {
            "success": True,
            "message": "Beneficiary deleted successfully",
            "data": serialize_beneficiary(beneficiary)
        }

    return router
