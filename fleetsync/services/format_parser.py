"""
Document parsing for master-data imports.

Turns an uploaded or pasted document into CandidateRecords. Three input
shapes are accepted:

  delimited-text          CSV, header row first, RFC4180 quoting
  structured-object-list  JSON list of flat objects (OData wrappers ok)
  spreadsheet             .xlsx workbook, first sheet, header row first

Each raw row is first captured as a DelimitedRow or StructuredEntry and
then normalized into the one CandidateRecord shape. Nothing downstream of
this module knows which format a record came from.

Row-level problems are accumulated on the ParseResult. A ParseError is
raised internally only for document-level failures and is turned into
`valid=False` by parse_document().
"""

import csv
import io
import json
import logging
import zipfile
from dataclasses import dataclass, field
from typing import Any

import openpyxl
from openpyxl.utils.exceptions import InvalidFileException

from fleetsync.core.entity_config import EntityConfig
from fleetsync.core.errors import ParseError, SizeLimitExceeded
from fleetsync.services.normalization import is_blank, normalize_whitespace

logger = logging.getLogger(__name__)

FORMAT_ALIASES = {
    "delimited-text": "delimited-text",
    "csv": "delimited-text",
    "structured-object-list": "structured-object-list",
    "json": "structured-object-list",
    "spreadsheet": "spreadsheet",
    "xlsx": "spreadsheet",
    "excel": "spreadsheet",
}

_EXTENSION_FORMATS = {
    ".csv": "delimited-text",
    ".txt": "delimited-text",
    ".json": "structured-object-list",
    ".xlsx": "spreadsheet",
}


# ─── Record Shapes ─────────────────────────────────────────────

@dataclass(frozen=True)
class DelimitedRow:
    """A row of a tabular document, keyed by the original header text."""
    row_number: int
    fields: dict[str, str]


@dataclass(frozen=True)
class StructuredEntry:
    """An object from a structured document, keyed by the original key."""
    row_number: int
    fields: dict[str, Any]


RawRecord = DelimitedRow | StructuredEntry


@dataclass(frozen=True)
class CandidateRecord:
    """
    One parsed record, independent of input format.

    `fields` maps logical field names to trimmed string values; absent
    optional columns are simply missing from the map.
    """
    entity: str
    row_number: int
    natural_key: str
    fields: dict[str, str]

    def get(self, name: str) -> str | None:
        return self.fields.get(name)


@dataclass
class ParseResult:
    valid: bool
    data: list[CandidateRecord] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


# ─── Helpers ───────────────────────────────────────────────────

def resolve_format(fmt: str) -> str:
    """Canonical format name for a declared format or alias."""
    canonical = FORMAT_ALIASES.get((fmt or "").strip().lower())
    if canonical is None:
        raise ParseError(
            f"Unsupported format '{fmt}'. Expected one of: "
            "delimited-text, structured-object-list, spreadsheet"
        )
    return canonical


def format_from_filename(filename: str | None) -> str | None:
    """Guess the format from a file extension."""
    if not filename:
        return None
    lower = filename.lower()
    for ext, fmt in _EXTENSION_FORMATS.items():
        if lower.endswith(ext):
            return fmt
    return None


def check_document_size(content: str | bytes, limit_bytes: int) -> None:
    size = len(content.encode("utf-8")) if isinstance(content, str) else len(content)
    if size > limit_bytes:
        raise SizeLimitExceeded(size, limit_bytes)


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _map_headers(
    headers: list[str],
    config: EntityConfig,
    warnings: list[str],
) -> dict[int, str]:
    """
    Column index → logical field name.

    Unknown columns are reported once and ignored. A required field with
    no column is a document-level failure.
    """
    lookup = config.header_lookup()
    mapping: dict[int, str] = {}
    unknown: list[str] = []
    for idx, header in enumerate(headers):
        key = header.strip().lower()
        if not key:
            continue
        name = lookup.get(key)
        if name is None:
            unknown.append(header.strip())
            continue
        if name in mapping.values():
            warnings.append(f"Column '{header.strip()}' duplicates field '{name}' and was ignored")
            continue
        mapping[idx] = name

    if unknown:
        warnings.append(f"Unrecognized columns ignored: {', '.join(unknown)}")

    mapped = set(mapping.values())
    missing = [f.name for f in config.required_fields if f.name not in mapped]
    if missing:
        raise ParseError(
            f"Missing required column(s): {', '.join(missing)}. "
            f"Found headers: {', '.join(h.strip() for h in headers if h.strip())}"
        )
    return mapping


def _to_candidate(
    raw: RawRecord,
    config: EntityConfig,
    errors: list[str],
) -> CandidateRecord | None:
    """Normalize a raw row into a CandidateRecord, or record why it can't be."""
    lookup = config.header_lookup()
    fields: dict[str, str] = {}

    for key, value in raw.fields.items():
        name = key if isinstance(raw, DelimitedRow) else lookup.get(str(key).strip().lower())
        if name is None:
            continue
        if isinstance(value, (dict, list)):
            errors.append(f"Row {raw.row_number}: field '{key}' must be a scalar value")
            return None
        if value is None:
            continue
        text_value = normalize_whitespace(_stringify(value))
        if name not in fields or is_blank(fields[name]):
            fields[name] = text_value

    key_value = fields.get(config.natural_key)
    if isinstance(raw, StructuredEntry):
        missing = [
            f.name for f in config.required_fields
            if f.name not in fields
        ]
        if missing:
            errors.append(
                f"Row {raw.row_number}: missing required field(s): {', '.join(missing)}"
            )
            return None

    return CandidateRecord(
        entity=config.name,
        row_number=raw.row_number,
        natural_key=key_value or "",
        fields=fields,
    )


# ─── Delimited Text ────────────────────────────────────────────

def _read_delimited(
    text_content: str,
    config: EntityConfig,
    warnings: list[str],
    errors: list[str],
) -> list[DelimitedRow]:
    reader = csv.reader(io.StringIO(text_content))
    try:
        headers = next(reader, None)
        if not headers or all(h.strip() == "" for h in headers):
            raise ParseError("Document has no header row")
        mapping = _map_headers(headers, config, warnings)

        rows: list[DelimitedRow] = []
        for values in reader:
            # Physical line of the record's end; header is line 1
            row_num = reader.line_num
            if not values or all(v.strip() == "" for v in values):
                continue
            if len(values) > len(headers):
                errors.append(
                    f"Row {row_num}: expected {len(headers)} values, got {len(values)}"
                )
                continue
            fields = {
                name: values[idx]
                for idx, name in mapping.items()
                if idx < len(values)
            }
            rows.append(DelimitedRow(row_number=row_num, fields=fields))
    except csv.Error as exc:
        raise ParseError(f"Malformed delimited text at line {reader.line_num}: {exc}") from exc
    return rows


# ─── Structured Object List ────────────────────────────────────

def _unwrap_entries(payload: Any) -> list[Any]:
    """Accept a bare list or the OData `{"value": [...]}` / `{"d": {"results": [...]}}` wrappers."""
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        if isinstance(payload.get("value"), list):
            return payload["value"]
        inner = payload.get("d")
        if isinstance(inner, dict) and isinstance(inner.get("results"), list):
            return inner["results"]
    raise ParseError("Structured document must be a list of objects")


def _read_structured(
    text_content: str,
    config: EntityConfig,
    warnings: list[str],
    errors: list[str],
) -> list[StructuredEntry]:
    try:
        payload = json.loads(text_content)
    except json.JSONDecodeError as exc:
        raise ParseError(f"Invalid JSON: {exc.msg} (line {exc.lineno}, column {exc.colno})") from exc

    entries = _unwrap_entries(payload)
    lookup = config.header_lookup()
    unknown: set[str] = set()
    rows: list[StructuredEntry] = []
    for i, entry in enumerate(entries, start=1):
        if not isinstance(entry, dict):
            errors.append(f"Row {i}: expected an object, got {type(entry).__name__}")
            continue
        for key in entry:
            # OData metadata keys are not data
            if str(key).strip().lower() not in lookup and not str(key).startswith(("@", "__")):
                unknown.add(str(key))
        rows.append(StructuredEntry(row_number=i, fields=entry))

    if unknown:
        warnings.append(f"Unrecognized fields ignored: {', '.join(sorted(unknown))}")
    return rows


# ─── Spreadsheet ───────────────────────────────────────────────

def _read_spreadsheet(
    file_bytes: bytes,
    config: EntityConfig,
    warnings: list[str],
    errors: list[str],
) -> list[DelimitedRow]:
    try:
        wb = openpyxl.load_workbook(io.BytesIO(file_bytes), read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, ValueError, OSError) as exc:
        raise ParseError(f"Unreadable workbook: {exc}") from exc

    try:
        ws = wb.active
        rows_iter = ws.iter_rows(values_only=True)
        header_values = next(rows_iter, None)
        if not header_values or all(h is None for h in header_values):
            raise ParseError("Workbook has no header row")
        headers = [str(h).strip() if h is not None else "" for h in header_values]
        mapping = _map_headers(headers, config, warnings)

        rows: list[DelimitedRow] = []
        row_num = 1
        for values in rows_iter:
            row_num += 1
            if not values or all(v is None or str(v).strip() == "" for v in values):
                continue
            fields = {
                name: _stringify(values[idx])
                for idx, name in mapping.items()
                if idx < len(values) and values[idx] is not None
            }
            rows.append(DelimitedRow(row_number=row_num, fields=fields))
    finally:
        wb.close()
    return rows


# ─── Entry Point ───────────────────────────────────────────────

def parse_document(
    content: str | bytes,
    fmt: str,
    config: EntityConfig,
) -> ParseResult:
    """
    Parse a document into CandidateRecords for one entity kind.

    Never raises for document problems: a catastrophic failure is
    reported as `valid=False` with the reason in `errors`.
    """
    warnings: list[str] = []
    errors: list[str] = []
    try:
        canonical = resolve_format(fmt)
        if canonical == "spreadsheet":
            if isinstance(content, str):
                raise ParseError("Spreadsheet content must be uploaded as a file")
            raw_rows: list[RawRecord] = list(_read_spreadsheet(content, config, warnings, errors))
        else:
            if isinstance(content, bytes):
                try:
                    content = content.decode("utf-8-sig")
                except UnicodeDecodeError as exc:
                    raise ParseError(f"Document is not valid UTF-8: {exc}") from exc
            content = content.lstrip("\ufeff")
            if not content.strip():
                raise ParseError("Document is empty")
            if canonical == "delimited-text":
                raw_rows = list(_read_delimited(content, config, warnings, errors))
            else:
                raw_rows = list(_read_structured(content, config, warnings, errors))
    except ParseError as exc:
        logger.info("Rejected %s document: %s", config.name, exc)
        return ParseResult(valid=False, warnings=warnings, errors=errors + [str(exc)])

    data = [
        candidate
        for candidate in (_to_candidate(raw, config, errors) for raw in raw_rows)
        if candidate is not None
    ]
    if not data:
        errors.append("No usable rows found")
        return ParseResult(valid=False, warnings=warnings, errors=errors)

    return ParseResult(valid=True, data=data, warnings=warnings, errors=errors)
