"""Enum normalization pass.

Walks ``ENUM_FIELD_POLICIES`` and makes every enum-backed text field
decodable: canonical spelling when it decodes, the policy's outcome when it
doesn't.
"""

from typing import Iterable, Optional

from business_migration.enums import (
    ENUM_FIELD_POLICIES,
    EnumFieldPolicy,
    InvalidPolicy,
    Invalid,
)
from business_migration.models import MigrationSnapshot, PassResult, RepairKind

PASS_NAME = "enum_normalization"


def _is_blank(value: Optional[str]) -> bool:
    return value is None or value.strip() == ""


def normalize_enum_fields(
    snapshot: MigrationSnapshot,
    policies: Iterable[EnumFieldPolicy] = ENUM_FIELD_POLICIES,
) -> PassResult:
    """Decode every policy field and repair what doesn't decode.

    Args:
        snapshot: Records of the current run
        policies: Field policy table

    Returns:
        PassResult with ENUM_CANONICALIZED / ENUM_DEFAULTED / ENUM_CLEARED changes
    """
    result = PassResult(pass_name=PASS_NAME)

    for policy in policies:
        for record in snapshot.records(policy.entity_type):
            result.records_examined += 1
            raw = getattr(record, policy.field_name)

            if policy.policy == InvalidPolicy.CLEAR and _is_blank(raw):
                # Unset override; blank text counts as unset
                if raw is not None:
                    setattr(record, policy.field_name, None)
                    snapshot.mark_dirty(record)
                    result.record(RepairKind.ENUM_CLEARED, record, policy.field_name, raw, None)
                continue

            decoded = policy.decode(raw)
            if isinstance(decoded, Invalid):
                if policy.policy == InvalidPolicy.CLEAR:
                    new_value, kind = None, RepairKind.ENUM_CLEARED
                else:
                    new_value, kind = policy.default.value, RepairKind.ENUM_DEFAULTED
            else:
                new_value, kind = decoded.variant.value, RepairKind.ENUM_CANONICALIZED
                if new_value == raw:
                    continue

            setattr(record, policy.field_name, new_value)
            snapshot.mark_dirty(record)
            result.record(kind, record, policy.field_name, raw, new_value)

    return result
