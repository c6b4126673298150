"""
LEDGER STORE - MONGODB TRANSACTION GLUE

Provides:
1. run_in_transaction: one Motor session + transaction per operation, retried
   on TransientTransactionError
2. lock_payment_type: claims a payment type inside the transaction so that
   concurrent allocation changes on the same payment type write-conflict
3. ensure_indexes: lookup indexes for beneficiaries and rosters
4. Document helpers (ObjectId parsing, JSON serialization)
"""

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import PyMongoError
from bson import ObjectId, Decimal128
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar
import logging
import os

from core.errors import BeneficiaryError, InvalidObjectIdError, StoreError

logger = logging.getLogger(__name__)

TRANSACTION_MAX_RETRIES = int(os.getenv("TRANSACTION_MAX_RETRIES", "3"))

USERS = "users"
PAYMENT_TYPES = "payment_types"
BENEFICIARIES = "beneficiaries"

T = TypeVar("T")


async def run_in_transaction(
    client: AsyncIOMotorClient,
    callback: Callable[[Any], Awaitable[T]],
    max_retries: int = TRANSACTION_MAX_RETRIES
) -> T:
    """
    Run callback(session) inside a MongoDB transaction.

    Commits when the callback returns, aborts when it raises. Domain errors
    propagate unchanged. A TransientTransactionError (write conflict with a
    concurrent transaction) re-runs the callback up to max_retries times;
    any other driver failure is raised as StoreError.
    """
    attempt = 0
    while True:
        attempt += 1
        async with await client.start_session() as session:
            try:
                async with session.start_transaction():
                    return await callback(session)
            except BeneficiaryError:
                raise
            except PyMongoError as e:
                if e.has_error_label("TransientTransactionError") and attempt <= max_retries:
                    logger.warning(f"[TRANSACTION] Transient failure, retrying ({attempt}/{max_retries}): {str(e)}")
                    continue
                logger.error(f"[TRANSACTION] Failed after {attempt} attempt(s): {str(e)}")
                raise StoreError(f"Transaction failed: {str(e)}") from e


async def lock_payment_type(
    db: AsyncIOMotorDatabase,
    payment_type_id: ObjectId,
    session=None
) -> Optional[Dict[str, Any]]:
    """
    Claim a payment type for an allocation change.

    MongoDB has no SELECT FOR UPDATE; bumping allocation_lock_sequence makes
    any other open transaction that claims the same payment type fail with a
    write conflict. Returns the payment type document, or None if missing.
    """
    return await db[PAYMENT_TYPES].find_one_and_update(
        {"_id": payment_type_id},
        {
            "$inc": {"allocation_lock_sequence": 1},
            "$set": {"allocation_locked_at": datetime.utcnow()}
        },
        return_document=ReturnDocument.AFTER,
        session=session
    )


async def lock_beneficiary(
    db: AsyncIOMotorDatabase,
    beneficiary_id: ObjectId,
    session=None
) -> Optional[Dict[str, Any]]:
    """
    Claim a beneficiary listed on a roster. A concurrent delete or update of
    the same beneficiary then write-conflicts instead of committing alongside.
    Returns the beneficiary document, or None if missing.
    """
    return await db[BENEFICIARIES].find_one_and_update(
        {"_id": beneficiary_id},
        {"$inc": {"roster_lock_sequence": 1}},
        return_document=ReturnDocument.AFTER,
        session=session
    )


async def ensure_indexes(db: AsyncIOMotorDatabase):
    """
    Create lookup indexes. (user_id, payment_type_id) uniqueness is checked by
    the lifecycle manager, so the compound index is not unique.
    """
    await db[BENEFICIARIES].create_index(
        [("payment_type_id", 1), ("user_id", 1)],
        name="idx_beneficiary_payment_type_user"
    )
    await db[BENEFICIARIES].create_index(
        [("user_id", 1)],
        name="idx_beneficiary_user"
    )
    await db[PAYMENT_TYPES].create_index(
        [("beneficiaries", 1)],
        name="idx_payment_type_beneficiaries"
    )
    logger.info("Beneficiary indexes ensured")


def to_object_id(value: Any, field: str = "ID") -> ObjectId:
    """Parse a string id, raising InvalidObjectIdError when malformed"""
    if isinstance(value, ObjectId):
        return value
    if not isinstance(value, str) or not ObjectId.is_valid(value):
        raise InvalidObjectIdError(field, value)
    return ObjectId(value)


def actor_reference(actor_id: Optional[str]) -> Any:
    """Store the acting user's id as ObjectId when it is one, else as given"""
    if actor_id and ObjectId.is_valid(actor_id):
        return ObjectId(actor_id)
    return actor_id


def serialize_doc(doc: Optional[Dict[str, Any]], id_field: Optional[str] = None) -> Optional[Dict[str, Any]]:
    """Serialize MongoDB document for JSON response (handles Decimal128, ObjectId, datetime)"""
    if doc is None:
        return None
    result = {}
    for key, value in doc.items():
        if key == "_id" and id_field:
            key = id_field
        if isinstance(value, ObjectId):
            result[key] = str(value)
        elif isinstance(value, Decimal128):
            result[key] = float(value.to_decimal())
        elif isinstance(value, datetime):
            result[key] = value.isoformat()
        elif isinstance(value, dict):
            result[key] = serialize_doc(value)
        elif isinstance(value, list):
            result[key] = [
                serialize_doc(item) if isinstance(item, dict)
                else str(item) if isinstance(item, ObjectId)
                else item
                for item in value
            ]
        else:
            result[key] = value
    return result
