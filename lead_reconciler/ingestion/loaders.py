"""Utilities for loading lead and renewal rows from spreadsheets."""
from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, MutableMapping, Optional, Sequence, Union

import pandas as pd

from ..models import LEAD, RENEWAL, LeadRow, ParsedRow, RenewalRow
from ..normalize import normalize_date

PathLike = Union[str, Path]
ColumnSpec = Union[str, Sequence[str]]

_COMMON_SYNONYMS: Mapping[str, Sequence[str]] = {
    "first_name": ("first_name", "firstname", "first", "insured_first_name"),
    "last_name": ("last_name", "lastname", "last", "insured_last_name"),
    "zip_code": ("zip_code", "zip", "zipcode", "postal_code"),
    "email": ("email", "email_address", "primary_email"),
    "household_key": ("household_key", "household"),
}

LEAD_SYNONYMS: Mapping[str, Sequence[str]] = {
    **_COMMON_SYNONYMS,
    "lead_date": ("lead_date", "lead_received_date", "date_received", "received_date"),
}

RENEWAL_SYNONYMS: Mapping[str, Sequence[str]] = {
    **_COMMON_SYNONYMS,
    "policy_number": ("policy_number", "policy", "policy_no", "policy_#"),
    "renewal_effective_date": ("renewal_effective_date", "effective_date", "renewal_date"),
    "city": ("city",),
    "state": ("state",),
    "product_name": ("product_name", "product"),
    "product_code": ("product_code",),
    "original_year": ("original_year", "orig_year"),
    "agent_number": ("agent_number", "agent", "agent_#"),
    "renewal_status": ("renewal_status",),
    "account_type": ("account_type",),
    "premium_old": ("premium_old", "old_premium", "prior_premium"),
    "premium_new": ("premium_new", "new_premium", "renewal_premium"),
    "premium_change_dollars": ("premium_change_dollars", "premium_change_$", "premium_change"),
    "premium_change_percent": ("premium_change_percent", "premium_change_%", "premium_change_pct"),
    "amount_due": ("amount_due",),
    "easy_pay": ("easy_pay", "easypay", "eft"),
    "multi_line_indicator": ("multi_line_indicator", "multi_line", "bundled"),
    "item_count": ("item_count", "items"),
    "years_prior_insurance": ("years_prior_insurance", "years_prior"),
    "carrier_status": ("carrier_status",),
}

# List fields collect every matching column, including suffixed ones such as
# ``Phone Primary`` and ``phone_alt``.
LIST_SYNONYMS: Mapping[str, Sequence[str]] = {
    "phones": ("phones", "phone", "phone_number", "primary_phone", "cell", "mobile"),
    "products_interested": ("products_interested", "products", "product_interest"),
}

_FLOAT_FIELDS = {"premium_old", "premium_new", "premium_change_dollars", "premium_change_percent", "amount_due"}
_INT_FIELDS = {"original_year", "item_count", "years_prior_insurance"}
_DATE_FIELDS = {"lead_date", "renewal_effective_date"}
_TRUE_VALUES = {"yes", "y", "true", "1", "x"}
_FALSE_VALUES = {"no", "n", "false", "0"}


class UnsupportedFileTypeError(ValueError):
    """Raised when an unsupported file format is passed to the loader."""


def load_lead_rows(
    path: PathLike,
    *,
    column_mapping: Optional[Mapping[str, ColumnSpec]] = None,
    sheet_name: Union[str, int, None] = 0,
    loader_kwargs: Optional[MutableMapping[str, Any]] = None,
) -> List[LeadRow]:
    """Load lead rows from a CSV/TSV/XLSX file.

    Parameters
    ----------
    path:
        Path to the spreadsheet.
    column_mapping:
        Optional mapping of :class:`LeadRow` field names to column names (or
        sequences of column names for ``phones`` and ``products_interested``).
    sheet_name:
        Sheet selector passed to :func:`pandas.read_excel`. Ignored for CSV.
    loader_kwargs:
        Extra keyword arguments forwarded to the pandas reader.
    """

    dataframe = _read_dataframe(path, sheet_name=sheet_name, loader_kwargs=loader_kwargs)
    return [
        _lead_from_series(row, dataframe.columns, dict(column_mapping or {}))
        for _, row in dataframe.iterrows()
        if not _row_is_empty(row)
    ]


def load_renewal_rows(
    path: PathLike,
    *,
    column_mapping: Optional[Mapping[str, ColumnSpec]] = None,
    sheet_name: Union[str, int, None] = 0,
    loader_kwargs: Optional[MutableMapping[str, Any]] = None,
) -> List[RenewalRow]:
    """Load renewal rows from a carrier renewal report (CSV/TSV/XLSX)."""

    dataframe = _read_dataframe(path, sheet_name=sheet_name, loader_kwargs=loader_kwargs)
    return [
        _renewal_from_series(row, dataframe.columns, dict(column_mapping or {}))
        for _, row in dataframe.iterrows()
        if not _row_is_empty(row)
    ]


def load_rows(path: PathLike, family: str, **kwargs: Any) -> List[ParsedRow]:
    loaders: Dict[str, Callable[..., List[Any]]] = {LEAD: load_lead_rows, RENEWAL: load_renewal_rows}
    try:
        loader = loaders[family]
    except KeyError as exc:
        raise ValueError(f"Unknown entity family '{family}'") from exc
    return loader(path, **kwargs)


def _read_dataframe(
    path: PathLike,
    *,
    sheet_name: Union[str, int, None] = 0,
    loader_kwargs: Optional[MutableMapping[str, Any]] = None,
) -> pd.DataFrame:
    loader_kwargs = dict(loader_kwargs or {})
    # Text everywhere so postal codes and policy numbers keep leading zeros.
    loader_kwargs.setdefault("dtype", str)
    path_obj = Path(path)
    suffix = path_obj.suffix.lower()

    if suffix in {".csv", ".tsv"}:
        if suffix == ".tsv":
            loader_kwargs.setdefault("sep", "\t")
        return pd.read_csv(path_obj, **loader_kwargs)

    if suffix in {".xls", ".xlsx", ".xlsm", ".xlsb"}:
        return pd.read_excel(path_obj, sheet_name=sheet_name, engine=loader_kwargs.pop("engine", None) or "openpyxl", **loader_kwargs)

    raise UnsupportedFileTypeError(f"Unsupported file extension: {path_obj.suffix}")


def _row_is_empty(row: pd.Series) -> bool:
    return all(pd.isna(value) or (isinstance(value, str) and not value.strip()) for value in row.values)


def _column_token(column: Any) -> str:
    return re.sub(r"\s+", "_", str(column).strip().lower())


def _resolve_columns(
    field: str,
    synonyms: Sequence[str],
    available_columns: Iterable[Any],
    mapping: Mapping[str, ColumnSpec],
    *,
    prefix_match: bool = False,
) -> List[Any]:
    if field in mapping:
        return _normalize_column_spec(mapping[field])

    resolved: List[Any] = []
    for column in available_columns:
        token = _column_token(column)
        for synonym in synonyms:
            if token == synonym or (prefix_match and token.startswith(f"{synonym}_")):
                resolved.append(column)
                break
    return resolved


def _normalize_column_spec(value: ColumnSpec) -> List[str]:
    if isinstance(value, str):
        return [value]
    return [str(item) for item in value]


def _extract_scalar(row: pd.Series, columns: Sequence[Any]) -> Optional[str]:
    for column in columns:
        if column not in row:
            continue
        text = _clean_text(row[column])
        if text is not None:
            return text
    return None


def _extract_list(row: pd.Series, columns: Sequence[Any], *, split: bool = False) -> List[str]:
    results: List[str] = []
    for column in columns:
        if column not in row:
            continue
        text = _clean_text(row[column])
        if not text:
            continue
        values = [part.strip() for part in re.split(r"[;,]", text)] if split else [text]
        for value in values:
            if value and value not in results:
                results.append(value)
    return results


def _clean_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, (list, tuple)) and pd.isna(value):
        return None
    text = str(value).strip()
    return text or None


def _clean_float(value: Optional[str]) -> Optional[float]:
    if value is None:
        return None
    text = value.replace("$", "").replace(",", "").replace("%", "").strip()
    if text.startswith("(") and text.endswith(")"):
        text = f"-{text[1:-1]}"
    try:
        return float(text)
    except ValueError:
        return None


def _clean_int(value: Optional[str]) -> Optional[int]:
    number = _clean_float(value)
    return int(number) if number is not None else None


def _clean_bool(value: Optional[str]) -> Optional[bool]:
    if value is None:
        return None
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    return None


def _clean_bundled(value: Optional[str]) -> str:
    flag = _clean_bool(value)
    if flag is None:
        return "n/a"
    return "yes" if flag else "no"


def _coerce(field: str, value: Optional[str]) -> Any:
    if field in _FLOAT_FIELDS:
        return _clean_float(value)
    if field in _INT_FIELDS:
        return _clean_int(value)
    if field in _DATE_FIELDS:
        return normalize_date(value)
    if field == "easy_pay":
        return _clean_bool(value)
    if field == "multi_line_indicator":
        return _clean_bundled(value)
    return value


def _metadata(row: pd.Series) -> Dict[str, Any]:
    return {
        str(column): value
        for column, value in row.items()
        if not pd.isna(value) and (not isinstance(value, str) or value.strip())
    }


def _scalars(
    row: pd.Series,
    columns: Iterable[Any],
    mapping: Mapping[str, ColumnSpec],
    synonyms: Mapping[str, Sequence[str]],
) -> Dict[str, Any]:
    columns = list(columns)
    return {
        field: _coerce(field, _extract_scalar(row, _resolve_columns(field, names, columns, mapping)))
        for field, names in synonyms.items()
    }


def _lead_from_series(row: pd.Series, columns: Iterable[Any], mapping: Mapping[str, ColumnSpec]) -> LeadRow:
    columns = list(columns)
    values = _scalars(row, columns, mapping, LEAD_SYNONYMS)
    phones = _extract_list(
        row, _resolve_columns("phones", LIST_SYNONYMS["phones"], columns, mapping, prefix_match=True)
    )
    products = _extract_list(
        row,
        _resolve_columns(
            "products_interested", LIST_SYNONYMS["products_interested"], columns, mapping, prefix_match=True
        ),
        split=True,
    )
    return LeadRow(phones=phones, products_interested=products, metadata=_metadata(row), **values)


def _renewal_from_series(row: pd.Series, columns: Iterable[Any], mapping: Mapping[str, ColumnSpec]) -> RenewalRow:
    columns = list(columns)
    values = _scalars(row, columns, mapping, RENEWAL_SYNONYMS)
    phones = _extract_list(
        row, _resolve_columns("phones", LIST_SYNONYMS["phones"], columns, mapping, prefix_match=True)
    )
    return RenewalRow(phones=phones, metadata=_metadata(row), **values)


__all__ = ["UnsupportedFileTypeError", "load_lead_rows", "load_renewal_rows", "load_rows"]
