"""Record store entity models.

These models represent the persisted records of the small-business store:
one Owner (business) per tenant and the dependent records scoped to it.

Enum-backed fields (template keys, statuses, stages) are stored as plain
text because earlier schema versions wrote free-form strings. Decoding and
repair of those fields lives in ``business_migration.enums``.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Dict, Optional, Type

from pydantic import BaseModel, ConfigDict, Field
from pydantic.functional_validators import BeforeValidator
from typing_extensions import Annotated


# =============================================================================
# Value Parsers (handle values read back from SQLite text columns)
# =============================================================================

def _parse_decimal(value):
    """Parse decimal from text, int or float."""
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    if isinstance(value, str):
        s = value.strip()
        if s == "":
            return Decimal("0")
        return Decimal(s)
    return value


def _parse_datetime(value):
    """Parse an ISO timestamp; naive values are treated as UTC."""
    if value is None:
        return None
    if isinstance(value, str):
        s = value.strip()
        if s == "":
            return None
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        value = datetime.fromisoformat(s)
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _parse_bool(value):
    """SQLite stores booleans as 0/1."""
    if isinstance(value, int) and not isinstance(value, bool):
        return value != 0
    return value


DecimalValue = Annotated[Decimal, BeforeValidator(_parse_decimal)]
UtcDateTime = Annotated[datetime, BeforeValidator(_parse_datetime)]
BoolValue = Annotated[bool, BeforeValidator(_parse_bool)]


def new_id() -> str:
    return str(uuid.uuid4())


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class EntityType(str, Enum):
    """Persisted record types (value is the table name)."""
    BUSINESS = "business"
    CLIENT = "client"
    INVOICE = "invoice"
    CONTRACT = "contract"
    JOB = "job"


# =============================================================================
# Base Model
# =============================================================================

class EntityBase(BaseModel):
    """Base model for all stored records."""
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=new_id, description="Record UUID")
    created_at: UtcDateTime = Field(default_factory=utc_now)


class Owner(EntityBase):
    """A business: the tenant-like root every other record is scoped to."""
    name: str = ""
    is_active: BoolValue = False

    default_tax_rate: DecimalValue = Decimal("0")
    currency_code: str = "USD"
    default_invoice_template_key: str = "classic_business"

    # Integration identifiers
    stripe_account_id: Optional[str] = None

    # Schedule defaults, minutes from midnight
    travel_buffer_minutes: int = 15
    workday_start_minutes: int = 9 * 60
    workday_end_minutes: int = 17 * 60


class DependentBase(EntityBase):
    """A record carrying an ``owner_id`` foreign key to an Owner."""
    owner_id: str = Field(..., description="Owning business id")


class PortalSyncFields(BaseModel):
    """Bookkeeping written by the document portal sync collaborator."""
    portal_needs_upload: BoolValue = False
    portal_upload_in_flight: BoolValue = False
    portal_last_error: Optional[str] = None
    portal_last_uploaded_at_ms: Optional[int] = None
    portal_last_uploaded_hash: Optional[str] = None
    portal_last_uploaded_location: Optional[str] = None


class Client(DependentBase):
    name: str = ""
    email: str = ""
    phone: str = ""
    address: str = ""
    portal_enabled: BoolValue = True


class Invoice(DependentBase, PortalSyncFields):
    """An invoice or estimate document."""
    invoice_number: str = ""
    document_type: str = "invoice"
    estimate_status: str = "draft"
    template_key_override: Optional[str] = None
    is_paid: BoolValue = False
    issue_date: UtcDateTime = Field(default_factory=utc_now)

    client_id: Optional[str] = None
    job_id: Optional[str] = None
    booking_request_id: Optional[str] = None


class Contract(DependentBase, PortalSyncFields):
    """A client agreement, optionally linked to an invoice, estimate or job."""
    title: str = ""
    status: str = "draft"

    client_id: Optional[str] = None
    invoice_id: Optional[str] = None
    estimate_id: Optional[str] = None
    job_id: Optional[str] = None


class Job(DependentBase):
    """Scheduled work for a client."""
    title: str = ""
    client_id: Optional[str] = None
    stage: str = "booked"
    source_booking_request_id: Optional[str] = None
    start_date: UtcDateTime = Field(default_factory=utc_now)
    end_date: UtcDateTime = Field(default_factory=utc_now)


ENTITY_MODELS: Dict[EntityType, Type[EntityBase]] = {
    EntityType.BUSINESS: Owner,
    EntityType.CLIENT: Client,
    EntityType.INVOICE: Invoice,
    EntityType.CONTRACT: Contract,
    EntityType.JOB: Job,
}

DEPENDENT_TYPES = (
    EntityType.CLIENT,
    EntityType.INVOICE,
    EntityType.CONTRACT,
    EntityType.JOB,
)

DOCUMENT_TYPES = (
    EntityType.INVOICE,
    EntityType.CONTRACT,
)


def entity_type_of(entity: EntityBase) -> EntityType:
    """Return the EntityType for a model instance."""
    for entity_type, model in ENTITY_MODELS.items():
        if type(entity) is model:
            return entity_type
    raise TypeError(f"Not a stored entity: {type(entity).__name__}")
