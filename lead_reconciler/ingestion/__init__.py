"""Spreadsheet loading and export helpers around the reconciliation pipeline."""

from .exporters import export_failures, export_records, failures_to_dataframe, records_to_dataframe
from .loaders import UnsupportedFileTypeError, load_lead_rows, load_renewal_rows, load_rows

__all__ = [
    "UnsupportedFileTypeError",
    "export_failures",
    "export_records",
    "failures_to_dataframe",
    "load_lead_rows",
    "load_renewal_rows",
    "load_rows",
    "records_to_dataframe",
]
