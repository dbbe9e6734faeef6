"""
Google Sheets API Client

This module provides a small, framework-agnostic client for the Sheets calls
form integrations make with delegated credentials.
"""

import asyncio
import logging
import re
from typing import Any, Dict, Optional

from googleapiclient.errors import HttpError

logger = logging.getLogger(__name__)

_SPREADSHEET_ID_PATTERN = re.compile(r"/spreadsheets/d/([a-zA-Z0-9-_]+)")


def extract_spreadsheet_id(url: str) -> Optional[str]:
    """
    Extract the spreadsheet ID from a Google Sheets URL.

    Args:
        url: URL such as https://docs.google.com/spreadsheets/d/<id>/edit

    Returns:
        Spreadsheet ID, or None if the URL is not a Sheets URL
    """
    if not url:
        return None
    match = _SPREADSHEET_ID_PATTERN.search(url)
    return match.group(1) if match else None


class SheetsClient:
    """
    Google Sheets API client.

    Args:
        service: Authenticated Google Sheets API service object

    Example:
        >>> from googleapiclient.discovery import build
        >>> service = build('sheets', 'v4', credentials=credentials)
        >>> sheets = SheetsClient(service)
        >>> await sheets.get_spreadsheet_info(spreadsheet_id)
    """

    def __init__(self, service):
        self.service = service
        logger.debug("SheetsClient initialized")

    async def get_spreadsheet_info(self, spreadsheet_id: str) -> Dict[str, Any]:
        """
        Check access to a spreadsheet and return its title and sheet names.

        Args:
            spreadsheet_id: Spreadsheet ID

        Returns:
            Dictionary with 'success' and either 'spreadsheetTitle'/'sheetNames'
            or 'error'
        """
        logger.info(f"[get_spreadsheet_info] Spreadsheet: {spreadsheet_id}")

        request = self.service.spreadsheets().get(
            spreadsheetId=spreadsheet_id,
            fields="properties.title,sheets.properties.title",
        )
        try:
            data = await asyncio.to_thread(request.execute)
        except HttpError as e:
            status = getattr(e.resp, "status", None)
            logger.warning(f"[get_spreadsheet_info] Sheets API error {status} for {spreadsheet_id}")
            if status == 403:
                return {
                    "success": False,
                    "error": "Permission denied. You need edit access to this spreadsheet.",
                }
            if status == 404:
                return {
                    "success": False,
                    "error": "Spreadsheet not found. Please check the URL.",
                }
            return {"success": False, "error": "Unable to access spreadsheet"}

        properties = data.get("properties") or {}
        sheet_names = [
            sheet.get("properties", {}).get("title")
            for sheet in data.get("sheets", [])
        ]
        return {
            "success": True,
            "spreadsheetId": spreadsheet_id,
            "spreadsheetTitle": properties.get("title"),
            "sheetNames": [name for name in sheet_names if name],
        }
