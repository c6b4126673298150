from pydantic import BaseModel, Field, field_validator
from typing import Optional, List
from enum import Enum
from bson import ObjectId

# Query defaults for paginated listings
DEFAULT_QUERY_PAGE = 1
DEFAULT_QUERY_LIMIT = 10


def validate_object_id(value: Optional[str], message: str) -> Optional[str]:
    """Reject ids that are not 24-char hex ObjectIds"""
    if value is None:
        return value
    if not isinstance(value, str) or not ObjectId.is_valid(value):
        raise ValueError(message)
    return value


# ============================================
# ROLES
# ============================================
class RoleName(str, Enum):
    SUPER_ADMIN = "super_admin"
    DEVELOPER = "developer"
    CONSULTANT = "consultant"
    GENERAL_ADMIN = "general_admin"
    ADMIN = "admin"
    GOVERNMENT = "government"
    STAKEHOLDER = "stakeholder"
    SERVICE = "service"
    LGA_HEAD = "lga_head"
    SUPER_VENDOR = "super_vendor"
    VENDOR = "vendor"
    SUPER_VENDOR_ADMIN = "super_vendor_admin"
    VENDOR_ADMIN = "vendor_admin"
    WALLET_ADMIN = "wallet_admin"
    ASSOCIATION = "association"
    THIRD_PARTY = "third_party"
    USER_ADMIN = "user_admin"
    ROLE_ADMIN = "role_admin"
    TRANSFER_ADMIN = "transfer_admin"
    STATE_SUPER_ADMIN = "state_super_admin"
    USER_ACCOUNT_ADMIN = "user_account_admin"
    UNIT_ADMIN = "unit_admin"
    ASSOCIATION_ADMIN = "association_admin"
    VEHICLE_ADMIN = "vehicle_admin"
    REGISTRATION_ADMIN = "registration_admin"
    DRIVER_REGISTRATION_ADMIN = "driver_registration_admin"
    VEHICLE_REGISTRATION_ADMIN = "vehicle_registration_admin"
    PRINTING_ADMIN = "printing_admin"
    INVOICE_ADMIN = "invoice_admin"
    UPDATE_ADMIN = "update_admin"
    VEHICLE_UPDATE_ADMIN = "vehicle_update_admin"
    DRIVER_UPDATE_ADMIN = "driver_update_admin"


ROLE_VALUES = {role.value for role in RoleName}


# ============================================
# BENEFICIARY REQUESTS
# ============================================
class BeneficiaryCreate(BaseModel):
    user_id: str = Field(..., alias="userId")
    percentage: float = Field(..., allow_inf_nan=False)
    payment_type_id: str = Field(..., alias="paymentTypeId")

    class Config:
        populate_by_name = True

    @field_validator("user_id")
    @classmethod
    def check_user_id(cls, v):
        return validate_object_id(v, "Invalid user ID")

    @field_validator("payment_type_id")
    @classmethod
    def check_payment_type_id(cls, v):
        return validate_object_id(v, "Invalid payment type ID")

    @field_validator("percentage")
    @classmethod
    def check_percentage(cls, v):
        if v < 0 or v > 100:
            raise ValueError("Percentage must be between 0 and 100")
        return v


class BeneficiaryUpdate(BaseModel):
    """Partial update; only supplied fields are validated and applied"""
    user_id: Optional[str] = Field(default=None, alias="userId")
    percentage: Optional[float] = Field(default=None, allow_inf_nan=False)
    payment_type_id: Optional[str] = Field(default=None, alias="paymentTypeId")
    role: Optional[str] = None

    class Config:
        populate_by_name = True

    @field_validator("user_id")
    @classmethod
    def check_user_id(cls, v):
        return validate_object_id(v, "Invalid user ID")

    @field_validator("payment_type_id")
    @classmethod
    def check_payment_type_id(cls, v):
        return validate_object_id(v, "Invalid payment type ID")

    @field_validator("percentage")
    @classmethod
    def check_percentage(cls, v):
        if v is not None and (v < 0 or v > 100):
            raise ValueError("Percentage must be between 0 and 100")
        return v

    @field_validator("role")
    @classmethod
    def check_role(cls, v):
        if v is not None and v not in ROLE_VALUES:
            raise ValueError("Invalid role")
        return v


# ============================================
# PAYMENT TYPE ROSTER
# ============================================
class PaymentTypeBeneficiariesUpdate(BaseModel):
    beneficiaries: List[str]

    @field_validator("beneficiaries")
    @classmethod
    def check_beneficiary_ids(cls, v):
        for beneficiary_id in v:
            validate_object_id(beneficiary_id, "Invalid beneficiary ID")
        return v


class RosterEntry(BaseModel):
    beneficiary_id: str
    percentage: float


# ============================================
# RESPONSE ENVELOPES
# ============================================
class Pagination(BaseModel):
    totalBeneficiaries: int
    totalPages: int
    currentPage: int
    limit: int
