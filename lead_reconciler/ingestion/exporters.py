"""Export utilities for reconciled records and failed rows."""
from __future__ import annotations

from pathlib import Path
from typing import Iterable, List, MutableMapping, Optional, Sequence, Union

import pandas as pd

from ..models import FailedRow, StoredRecord

PathLike = Union[str, Path]

_RECORD_COLUMNS = [
    "id",
    "tenant_id",
    "family",
    "natural_key",
    "status",
    "source_id",
    "first_name",
    "last_name",
    "zip_code",
    "phones",
    "email",
    "contact_id",
    "attention",
    "attention_reason",
    "conflicting_source_id",
    "is_active",
    "dropped_from_report_at",
    "upload_id",
    "last_upload_id",
]


def records_to_dataframe(records: Iterable[StoredRecord], *, include_attributes: bool = True) -> pd.DataFrame:
    """Convert stored records into a :class:`pandas.DataFrame`, one row per record."""

    rows: List[MutableMapping[str, object]] = []
    for record in records:
        row: MutableMapping[str, object] = {column: record.get(column) for column in _RECORD_COLUMNS}
        row["phones"] = _join_list(record.phones)
        if include_attributes:
            for key, value in sorted(record.attributes.items()):
                row[f"attributes.{key}"] = _join_list(value) if isinstance(value, list) else value
        rows.append(row)
    return pd.DataFrame(rows, columns=None if rows else _RECORD_COLUMNS)


def failures_to_dataframe(failures: Sequence[FailedRow]) -> pd.DataFrame:
    """Tabulate rows that still failed after the retry pass."""

    return pd.DataFrame(
        [
            {
                "row_number": failure.index + 1,
                "natural_key": failure.natural_key,
                "name": failure.row.display_name(),
                "error": failure.error,
            }
            for failure in failures
        ],
        columns=["row_number", "natural_key", "name", "error"],
    )


def export_records(
    records: Iterable[StoredRecord],
    path: PathLike,
    *,
    include_attributes: bool = True,
    sheet_name: str = "Records",
    exporter_kwargs: Optional[MutableMapping[str, object]] = None,
) -> Path:
    """Write stored records to a CSV or Excel file."""

    output_path = Path(path)
    dataframe = records_to_dataframe(records, include_attributes=include_attributes)
    _write_dataframe(dataframe, output_path, sheet_name=sheet_name, exporter_kwargs=exporter_kwargs)
    return output_path


def export_failures(
    failures: Sequence[FailedRow],
    path: PathLike,
    *,
    sheet_name: str = "Failures",
    exporter_kwargs: Optional[MutableMapping[str, object]] = None,
) -> Path:
    output_path = Path(path)
    _write_dataframe(failures_to_dataframe(failures), output_path, sheet_name=sheet_name, exporter_kwargs=exporter_kwargs)
    return output_path


def _join_list(values: Iterable[Optional[str]]) -> str:
    cleaned: List[str] = []
    for value in values:
        if not value:
            continue
        text = str(value).strip()
        if text:
            cleaned.append(text)
    return "; ".join(cleaned)


def _write_dataframe(
    dataframe: pd.DataFrame,
    path: Path,
    *,
    sheet_name: str,
    exporter_kwargs: Optional[MutableMapping[str, object]],
) -> None:
    exporter_kwargs = dict(exporter_kwargs or {})
    suffix = path.suffix.lower()
    path.parent.mkdir(parents=True, exist_ok=True)

    if suffix in {".csv", ".tsv"}:
        if suffix == ".tsv":
            exporter_kwargs.setdefault("sep", "\t")
        dataframe.to_csv(path, index=False, **exporter_kwargs)
        return

    if suffix in {".xls", ".xlsx", ".xlsm", ".xlsb"}:
        engine = exporter_kwargs.pop("engine", None) or "openpyxl"
        dataframe.to_excel(path, index=False, sheet_name=sheet_name, engine=engine, **exporter_kwargs)
        return

    raise ValueError(f"Unsupported export file extension: {suffix}")


__all__ = ["export_failures", "export_records", "failures_to_dataframe", "records_to_dataframe"]
