"""Enum-backed text fields: variants, decoding, and repair policy.

Every enum stored as text gets one decode function returning either
``Ok(variant)`` or ``Invalid(raw)``. Decoding trims whitespace, ignores case,
treats spaces and hyphens as underscores, and accepts spellings written by
earlier schema versions.

What happens to an Invalid value is not decided here per call site but in
``ENUM_FIELD_POLICIES``: required fields get a default, optional override
fields are cleared so normal inheritance resumes.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional, Tuple, Type, Union

from core.models.entities import EntityType


class InvoiceTemplateKey(str, Enum):
    CLASSIC_BUSINESS = "classic_business"
    MODERN_CLEAN = "modern_clean"
    BOLD_HEADER = "bold_header"
    MINIMAL_COMPACT = "minimal_compact"
    CREATIVE_STUDIO = "creative_studio"
    CONTRACTOR_TRADES = "contractor_trades"


class JobStage(str, Enum):
    BOOKED = "booked"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELED = "canceled"


class ContractStatus(str, Enum):
    DRAFT = "draft"
    SENT = "sent"
    SIGNED = "signed"
    CANCELLED = "cancelled"


class EstimateStatus(str, Enum):
    DRAFT = "draft"
    SENT = "sent"
    ACCEPTED = "accepted"
    DECLINED = "declined"


class DocumentType(str, Enum):
    INVOICE = "invoice"
    ESTIMATE = "estimate"


DEFAULT_INVOICE_TEMPLATE_KEY = InvoiceTemplateKey.CLASSIC_BUSINESS


# =============================================================================
# Decode Results
# =============================================================================

@dataclass(frozen=True)
class Ok:
    """Stored text decoded to a known variant."""
    variant: Enum


@dataclass(frozen=True)
class Invalid:
    """Stored text is not a known variant (or is missing)."""
    raw: Optional[str]


DecodeResult = Union[Ok, Invalid]


def _normalize_key(raw: str) -> str:
    key = raw.strip().lower()
    return "_".join(key.replace("-", " ").split())


def _decode(
    enum_cls: Type[Enum],
    raw: Optional[str],
    aliases: Optional[Dict[str, str]] = None,
) -> DecodeResult:
    if raw is None:
        return Invalid(raw)
    key = _normalize_key(raw)
    if aliases:
        key = aliases.get(key, key)
    try:
        return Ok(enum_cls(key))
    except ValueError:
        return Invalid(raw)


# Spellings from earlier schema versions
JOB_STAGE_ALIASES = {
    "scheduled": JobStage.BOOKED.value,
    "cancelled": JobStage.CANCELED.value,
    "inprogress": JobStage.IN_PROGRESS.value,
    "done": JobStage.COMPLETED.value,
}

CONTRACT_STATUS_ALIASES = {
    "canceled": ContractStatus.CANCELLED.value,
}


def decode_invoice_template_key(raw: Optional[str]) -> DecodeResult:
    return _decode(InvoiceTemplateKey, raw)


def decode_job_stage(raw: Optional[str]) -> DecodeResult:
    return _decode(JobStage, raw, JOB_STAGE_ALIASES)


def decode_contract_status(raw: Optional[str]) -> DecodeResult:
    return _decode(ContractStatus, raw, CONTRACT_STATUS_ALIASES)


def decode_estimate_status(raw: Optional[str]) -> DecodeResult:
    return _decode(EstimateStatus, raw)


def decode_document_type(raw: Optional[str]) -> DecodeResult:
    return _decode(DocumentType, raw)


# =============================================================================
# Per-field Policy Table
# =============================================================================

class InvalidPolicy(str, Enum):
    """What to store when a field fails to decode."""
    DEFAULT = "default"  # Required field: substitute a safe variant
    CLEAR = "clear"      # Optional override: unset, fall back to inherited value


@dataclass(frozen=True)
class EnumFieldPolicy:
    entity_type: EntityType
    field_name: str
    decode: Callable[[Optional[str]], DecodeResult]
    policy: InvalidPolicy
    default: Optional[Enum] = None

    def __post_init__(self):
        if self.policy == InvalidPolicy.DEFAULT and self.default is None:
            raise ValueError(f"{self.entity_type.value}.{self.field_name}: DEFAULT policy needs a default")


ENUM_FIELD_POLICIES: Tuple[EnumFieldPolicy, ...] = (
    EnumFieldPolicy(
        EntityType.BUSINESS, "default_invoice_template_key",
        decode_invoice_template_key, InvalidPolicy.DEFAULT, DEFAULT_INVOICE_TEMPLATE_KEY,
    ),
    EnumFieldPolicy(
        EntityType.INVOICE, "template_key_override",
        decode_invoice_template_key, InvalidPolicy.CLEAR,
    ),
    EnumFieldPolicy(
        EntityType.INVOICE, "document_type",
        decode_document_type, InvalidPolicy.DEFAULT, DocumentType.INVOICE,
    ),
    EnumFieldPolicy(
        EntityType.INVOICE, "estimate_status",
        decode_estimate_status, InvalidPolicy.DEFAULT, EstimateStatus.DRAFT,
    ),
    EnumFieldPolicy(
        EntityType.CONTRACT, "status",
        decode_contract_status, InvalidPolicy.DEFAULT, ContractStatus.DRAFT,
    ),
    EnumFieldPolicy(
        EntityType.JOB, "stage",
        decode_job_stage, InvalidPolicy.DEFAULT, JobStage.BOOKED,
    ),
)
