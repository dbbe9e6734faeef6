"""Google Sheets access for form integrations."""

from .client import SheetsClient, extract_spreadsheet_id

__all__ = [
    'SheetsClient',
    'extract_spreadsheet_id',
]
