"""
Field-level validation of parsed candidates.

Every rule is checked on every record; a record collects all of its
FieldErrors rather than stopping at the first. Records with errors are
reported and excluded from classification.
"""

import re
from dataclasses import dataclass, field

from fleetsync.core.entity_config import EntityConfig, FieldDef
from fleetsync.core.errors import FieldError
from fleetsync.services.format_parser import CandidateRecord
from fleetsync.services.normalization import is_blank, normalize_identifier

TRUE_VALUES = {"true", "yes", "y", "1", "t"}
FALSE_VALUES = {"false", "no", "n", "0", "f"}


@dataclass(frozen=True)
class ValidatedRecord:
    candidate: CandidateRecord
    errors: tuple[FieldError, ...] = field(default_factory=tuple)

    @property
    def ok(self) -> bool:
        return not self.errors


def parse_boolean(value: str) -> bool | None:
    v = value.strip().lower()
    if v in TRUE_VALUES:
        return True
    if v in FALSE_VALUES:
        return False
    return None


def _check_field(fdef: FieldDef, value: str | None, row: int) -> list[FieldError]:
    if is_blank(value):
        if fdef.required:
            return [FieldError(row, fdef.name, "is required")]
        return []

    errors: list[FieldError] = []
    if fdef.max_length is not None and len(value) > fdef.max_length:
        errors.append(FieldError(row, fdef.name, f"exceeds {fdef.max_length} characters"))
    if fdef.pattern and not re.match(fdef.pattern, value):
        errors.append(FieldError(row, fdef.name, f"has an invalid format: '{value}'"))
    if fdef.data_type == "boolean" and parse_boolean(value) is None:
        errors.append(FieldError(row, fdef.name, f"must be true or false, got '{value}'"))
    if fdef.data_type == "enum" and fdef.enum_values:
        allowed = {v.lower() for v in fdef.enum_values}
        if value.strip().lower() not in allowed:
            errors.append(FieldError(
                row, fdef.name,
                f"must be one of {', '.join(fdef.enum_values)}, got '{value}'",
            ))
    return errors


def validate_records(
    records: list[CandidateRecord],
    config: EntityConfig,
) -> list[ValidatedRecord]:
    """
    Validate a batch.

    Returns one ValidatedRecord per input, in input order. A natural key
    repeated within the batch is an error on every occurrence after the
    first.
    """
    seen_keys: dict[str, int] = {}
    results: list[ValidatedRecord] = []

    for record in records:
        errors: list[FieldError] = []
        for fdef in config.fields:
            errors.extend(_check_field(fdef, record.get(fdef.name), record.row_number))

        if not is_blank(record.natural_key):
            key = normalize_identifier(record.natural_key)
            first_row = seen_keys.get(key)
            if first_row is not None:
                errors.append(FieldError(
                    record.row_number,
                    config.natural_key,
                    f"duplicates row {first_row} ('{record.natural_key}')",
                ))
            else:
                seen_keys[key] = record.row_number

        results.append(ValidatedRecord(candidate=record, errors=tuple(errors)))

    return results
