from motor.motor_asyncio import AsyncIOMotorDatabase
from datetime import datetime
from typing import Optional, Dict, Any
import logging

logger = logging.getLogger(__name__)

# Entity types recorded in the audit trail
BENEFICIARY_ENTITY = "BENEFICIARY"
PAYMENT_TYPE_ENTITY = "PAYMENT_TYPE"


class AuditService:
    """Service for immutable audit logging"""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.collection = db.audit_logs

    async def log_action(
        self,
        entity_type: str,
        entity_id: str,
        action_type: str,
        user_id: Optional[str],
        old_value: Optional[Dict[str, Any]] = None,
        new_value: Optional[Dict[str, Any]] = None,
        session=None
    ):
        """
        Log an action to audit trail (INSERT ONLY).

        Pass the operation's session so the entry commits or rolls back with
        the mutation it describes. A failed insert inside a session has already
        aborted that transaction on the server, so the error is re-raised.
        """
        try:
            audit_entry = {
                "module_name": "BENEFICIARY_ALLOCATION",
                "entity_type": entity_type,
                "entity_id": entity_id,
                "action_type": action_type,
                "old_value_json": old_value,
                "new_value_json": new_value,
                "user_id": user_id,
                "timestamp": datetime.utcnow()
            }

            await self.collection.insert_one(audit_entry, session=session)
            logger.info(f"Audit log created: {action_type} on {entity_type}:{entity_id} by user:{user_id}")
        except Exception as e:
            logger.error(f"Failed to create audit log: {str(e)}")
            # Outside a session the main operation does not depend on the audit entry
            if session is not None:
                raise
