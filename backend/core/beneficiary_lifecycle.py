"""
BENEFICIARY LIFECYCLE MANAGER

Create / update / delete / detach beneficiaries, each as a single MongoDB
transaction:

1. Open transaction (retried on transient write conflicts)
2. Read the snapshots the operation needs
3. Run the allocation invariant engine
4. Write, audit, commit

Any exception aborts the transaction. The manager holds no state between
calls.
"""

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ReturnDocument
from bson import ObjectId
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
import logging
import math

from audit_service import AuditService, BENEFICIARY_ENTITY
from core.allocation_engine import validate_allocation
from core.errors import (
    NotFoundError,
    DuplicateExactError,
    DuplicateUserPaymentTypeError,
    ReferentialBlockError
)
from core.ledger_store import (
    USERS, PAYMENT_TYPES, BENEFICIARIES,
    run_in_transaction, lock_payment_type,
    to_object_id, actor_reference, serialize_doc
)
from models import (
    BeneficiaryCreate, BeneficiaryUpdate, Pagination,
    DEFAULT_QUERY_PAGE, DEFAULT_QUERY_LIMIT
)

logger = logging.getLogger(__name__)


def parse_positive_int(value: Any, default: int) -> int:
    """Lenient page/limit parsing: anything unusable falls back to the default"""
    try:
        parsed = int(float(value))
    except (TypeError, ValueError, OverflowError):
        return default
    return parsed if parsed >= 1 else default


def collapse_by_user(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Keep one row per distinct user_id, first occurrence wins.

    Display-level only: applied to an already paginated page, so the page may
    come back shorter than the limit.
    """
    seen = set()
    collapsed = []
    for row in rows:
        key = str(row.get("user_id"))
        if key in seen:
            continue
        seen.add(key)
        collapsed.append(row)
    return collapsed


class BeneficiaryLifecycleManager:
    """
    Beneficiary operations with allocation invariant enforcement.
    """

    def __init__(
        self,
        client: AsyncIOMotorClient,
        db: AsyncIOMotorDatabase,
        audit_service: Optional[AuditService] = None
    ):
        self.client = client
        self.db = db
        self.audit_service = audit_service

    async def _audit(self, action_type: str, entity_id, actor_id, old_value=None, new_value=None, session=None):
        if self.audit_service is None:
            return
        await self.audit_service.log_action(
            entity_type=BENEFICIARY_ENTITY,
            entity_id=str(entity_id),
            action_type=action_type,
            user_id=actor_id,
            old_value=serialize_doc(old_value, "beneficiary_id"),
            new_value=serialize_doc(new_value, "beneficiary_id"),
            session=session
        )

    async def _load_beneficiary(self, beneficiary_id: ObjectId, session=None) -> Dict[str, Any]:
        beneficiary = await self.db[BENEFICIARIES].find_one({"_id": beneficiary_id}, session=session)
        if not beneficiary:
            raise NotFoundError("Beneficiary", "Beneficiary not found", str(beneficiary_id))
        return beneficiary

    async def _load_user(self, user_id: ObjectId, session=None) -> Dict[str, Any]:
        user = await self.db[USERS].find_one({"_id": user_id}, session=session)
        if not user:
            raise NotFoundError("User", "User not found", str(user_id))
        return user

    async def _lock_payment_type(self, payment_type_id: ObjectId, session=None) -> Dict[str, Any]:
        payment_type = await lock_payment_type(self.db, payment_type_id, session=session)
        if not payment_type:
            raise NotFoundError("PaymentType", "Payment type not found", str(payment_type_id))
        return payment_type

    async def _payment_type_beneficiaries(self, payment_type_id: ObjectId, session=None) -> List[Dict[str, Any]]:
        return await self.db[BENEFICIARIES].find(
            {"payment_type_id": payment_type_id},
            session=session
        ).to_list(length=None)

    # =========================================================================
    # CREATE
    # =========================================================================

    async def create(self, data: BeneficiaryCreate, created_by: Optional[str] = None) -> Dict[str, Any]:
        """
        Create a beneficiary on a payment type.

        Raises:
            NotFoundError: user or payment type missing
            DuplicateExactError: same user, percentage and payment type exists
            DuplicateUserPaymentTypeError: user already holds a share on the payment type
            AllocationExceededError: payment type total would exceed 100%
        """
        user_oid = to_object_id(data.user_id, "user ID")
        payment_type_oid = to_object_id(data.payment_type_id, "payment type ID")

        async def _create(session):
            user = await self._load_user(user_oid, session=session)
            await self._lock_payment_type(payment_type_oid, session=session)

            exact = await self.db[BENEFICIARIES].find_one(
                {
                    "user_id": user_oid,
                    "percentage": data.percentage,
                    "payment_type_id": payment_type_oid
                },
                session=session
            )
            if exact:
                raise DuplicateExactError(
                    "Beneficiary with the same user ID and percentage already exists for this Payment Type",
                    details={"existing_beneficiary_id": str(exact["_id"])}
                )

            same_pair = await self.db[BENEFICIARIES].find_one(
                {"user_id": user_oid, "payment_type_id": payment_type_oid},
                session=session
            )
            if same_pair:
                raise DuplicateUserPaymentTypeError(
                    "Beneficiary with the same user ID already exists for this payment type with a different percentage",
                    details={"existing_beneficiary_id": str(same_pair["_id"])}
                )

            existing = await self._payment_type_beneficiaries(payment_type_oid, session=session)
            total = validate_allocation(existing, data.percentage, user.get("role"))

            now = datetime.utcnow()
            beneficiary = {
                "user_id": user_oid,
                "percentage": data.percentage,
                "role": user.get("role"),
                "payment_type_id": payment_type_oid,
                "created_by": actor_reference(created_by),
                "created_at": now,
                "updated_at": now
            }
            result = await self.db[BENEFICIARIES].insert_one(beneficiary, session=session)
            beneficiary["_id"] = result.inserted_id

            await self._audit("CREATE", result.inserted_id, created_by, new_value=beneficiary, session=session)
            logger.info(
                f"Beneficiary {result.inserted_id} created: user={user_oid}, "
                f"payment_type={payment_type_oid}, percentage={data.percentage}, total={total}"
            )
            return beneficiary

        return await run_in_transaction(self.client, _create)

    # =========================================================================
    # READ
    # =========================================================================

    async def get_beneficiary(self, beneficiary_id: str) -> Dict[str, Any]:
        oid = to_object_id(beneficiary_id, "beneficiary ID")
        return await self._load_beneficiary(oid)

    async def list_beneficiaries(
        self,
        user_id: Optional[str] = None,
        percentage: Optional[float] = None,
        payment_type_id: Optional[str] = None,
        page: Any = None,
        limit: Any = None
    ) -> Tuple[List[Dict[str, Any]], Dict[str, int]]:
        """
        Filtered, paginated listing collapsed to one row per user.

        Returns (rows, pagination). Pagination counts are taken before the
        per-user collapse.
        """
        page = parse_positive_int(page, DEFAULT_QUERY_PAGE)
        limit = parse_positive_int(limit, DEFAULT_QUERY_LIMIT)
        skip = (page - 1) * limit

        query: Dict[str, Any] = {}
        if user_id:
            query["user_id"] = to_object_id(user_id, "user ID")
        if percentage is not None:
            query["percentage"] = percentage
        if payment_type_id:
            query["payment_type_id"] = to_object_id(payment_type_id, "payment type ID")

        total_beneficiaries = await self.db[BENEFICIARIES].count_documents(query)
        rows = await self.db[BENEFICIARIES].find(query).skip(skip).limit(limit).to_list(length=limit)

        rows = collapse_by_user(rows)
        await self._populate(rows)

        pagination = Pagination(
            totalBeneficiaries=total_beneficiaries,
            totalPages=math.ceil(total_beneficiaries / limit),
            currentPage=page,
            limit=limit
        )
        return rows, pagination.dict()

    async def _populate(self, rows: List[Dict[str, Any]]):
        """Attach user and payment type summaries to listed rows"""
        user_ids = {row["user_id"] for row in rows if row.get("user_id") is not None}
        payment_type_ids = {row["payment_type_id"] for row in rows if row.get("payment_type_id") is not None}

        users = {}
        if user_ids:
            async for user in self.db[USERS].find({"_id": {"$in": list(user_ids)}}):
                users[user["_id"]] = {
                    "user_id": user["_id"],
                    "full_name": user.get("full_name"),
                    "email": user.get("email"),
                    "role": user.get("role")
                }

        payment_types = {}
        if payment_type_ids:
            async for payment_type in self.db[PAYMENT_TYPES].find({"_id": {"$in": list(payment_type_ids)}}):
                payment_types[payment_type["_id"]] = {
                    "payment_type_id": payment_type["_id"],
                    "name": payment_type.get("name")
                }

        for row in rows:
            row["user"] = users.get(row.get("user_id"))
            row["payment_type"] = payment_types.get(row.get("payment_type_id"))

    # =========================================================================
    # UPDATE
    # =========================================================================

    async def update(
        self,
        beneficiary_id: str,
        data: BeneficiaryUpdate,
        actor_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Partially update a beneficiary and re-check the allocation of its
        (possibly new) payment type with the record itself excluded.
        """
        oid = to_object_id(beneficiary_id, "beneficiary ID")
        fields = data.dict(exclude_none=True)
        new_user_oid = to_object_id(fields["user_id"], "user ID") if "user_id" in fields else None
        new_payment_type_oid = (
            to_object_id(fields["payment_type_id"], "payment type ID")
            if "payment_type_id" in fields else None
        )

        async def _update(session):
            existing = await self._load_beneficiary(oid, session=session)

            if new_user_oid is not None and "percentage" in fields and new_payment_type_oid is not None:
                duplicate = await self.db[BENEFICIARIES].find_one(
                    {
                        "user_id": new_user_oid,
                        "percentage": fields["percentage"],
                        "payment_type_id": new_payment_type_oid,
                        "_id": {"$ne": oid}
                    },
                    session=session
                )
                if duplicate:
                    raise DuplicateExactError(
                        "Beneficiary with the same percentage and user ID already exists under this payment type",
                        details={"existing_beneficiary_id": str(duplicate["_id"])}
                    )

            updated = dict(existing)
            if new_user_oid is not None:
                user = await self._load_user(new_user_oid, session=session)
                updated["user_id"] = new_user_oid
                if "role" not in fields:
                    updated["role"] = user.get("role")
            if "percentage" in fields:
                updated["percentage"] = fields["percentage"]
            if new_payment_type_oid is not None:
                updated["payment_type_id"] = new_payment_type_oid
            if "role" in fields:
                updated["role"] = fields["role"]

            payment_type_oid = updated.get("payment_type_id")
            pair_changed = (
                updated.get("user_id") != existing.get("user_id")
                or payment_type_oid != existing.get("payment_type_id")
            )
            if pair_changed and payment_type_oid is not None:
                clash = await self.db[BENEFICIARIES].find_one(
                    {
                        "user_id": updated["user_id"],
                        "payment_type_id": payment_type_oid,
                        "_id": {"$ne": oid}
                    },
                    session=session
                )
                if clash:
                    raise DuplicateUserPaymentTypeError(
                        "Beneficiary with the same user ID already exists for this payment type with a different percentage",
                        details={"existing_beneficiary_id": str(clash["_id"])}
                    )

            total = None
            if payment_type_oid is not None:
                await self._lock_payment_type(payment_type_oid, session=session)
                peers = await self._payment_type_beneficiaries(payment_type_oid, session=session)
                total = validate_allocation(
                    peers,
                    updated.get("percentage", 0),
                    updated.get("role"),
                    exclude_id=oid
                )

            updated["updated_at"] = datetime.utcnow()
            changes = {key: value for key, value in updated.items() if key != "_id"}
            await self.db[BENEFICIARIES].update_one({"_id": oid}, {"$set": changes}, session=session)

            await self._audit("UPDATE", oid, actor_id, old_value=existing, new_value=updated, session=session)
            logger.info(f"Beneficiary {oid} updated: fields={sorted(fields)}, total={total}")
            return updated

        return await run_in_transaction(self.client, _update)

    # =========================================================================
    # DELETE / DETACH
    # =========================================================================

    async def delete(self, beneficiary_id: str, actor_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Delete a beneficiary that no payment type roster references.
        Returns the deleted document.
        """
        oid = to_object_id(beneficiary_id, "beneficiary ID")

        async def _delete(session):
            blocking = await self.db[PAYMENT_TYPES].find(
                {"beneficiaries": oid},
                {"_id": 1},
                session=session
            ).to_list(length=None)
            if blocking:
                raise ReferentialBlockError(str(oid), [str(p["_id"]) for p in blocking])

            deleted = await self.db[BENEFICIARIES].find_one_and_delete({"_id": oid}, session=session)
            if not deleted:
                raise NotFoundError("Beneficiary", "Beneficiary not found", str(oid))

            await self._audit("DELETE", oid, actor_id, old_value=deleted, session=session)
            logger.info(f"Beneficiary {oid} deleted")
            return deleted

        return await run_in_transaction(self.client, _delete)

    async def remove_from_payment_type(self, beneficiary_id: str, actor_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Detach a beneficiary: pull it from every payment type roster and clear
        its payment_type_id. Afterwards the beneficiary can be deleted.
        """
        oid = to_object_id(beneficiary_id, "beneficiary ID")

        async def _detach(session):
            existing = await self._load_beneficiary(oid, session=session)

            await self.db[PAYMENT_TYPES].update_many(
                {"beneficiaries": oid},
                {"$pull": {"beneficiaries": oid}, "$inc": {"allocation_lock_sequence": 1}},
                session=session
            )
            updated = await self.db[BENEFICIARIES].find_one_and_update(
                {"_id": oid},
                {"$set": {"payment_type_id": None, "updated_at": datetime.utcnow()}},
                return_document=ReturnDocument.AFTER,
                session=session
            )

            await self._audit("DETACH", oid, actor_id, old_value=existing, new_value=updated, session=session)
            logger.info(f"Beneficiary {oid} removed from payment type {existing.get('payment_type_id')}")
            return updated

        return await run_in_transaction(self.client, _detach)
