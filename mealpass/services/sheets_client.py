"""
Read-only Google Sheets access for roster sync
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from google.oauth2.service_account import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from mealpass.core.exceptions import UpstreamError
from mealpass.services.firebase_client import load_service_account_info

logger = logging.getLogger(__name__)

SCOPES = ['https://www.googleapis.com/auth/spreadsheets.readonly']


@dataclass
class SheetData:
    headers: List[str]
    rows: List[List[str]]
    sheet_name: str


class SheetsClient:
    """Fetches a worksheet as a header row plus data rows"""

    def __init__(self, service=None):
        self._service = service

    @property
    def service(self):
        if self._service is None:
            info = load_service_account_info()
            if not info:
                raise UpstreamError("Google Sheets", "Service account credentials are not configured")
            credentials = Credentials.from_service_account_info(info, scopes=SCOPES)
            self._service = build('sheets', 'v4', credentials=credentials, cache_discovery=False)
        return self._service

    def fetch(self, sheet_id: str, sheet_name: Optional[str] = None) -> SheetData:
        try:
            target = sheet_name or self._first_sheet_name(sheet_id)
            response = self.service.spreadsheets().values().get(
                spreadsheetId=sheet_id,
                range=target,
            ).execute()
        except HttpError as e:
            logger.error(f"Sheets API error for {sheet_id}: {e}")
            raise UpstreamError("Google Sheets", f"Could not read sheet {sheet_id}: {e}")

        values = response.get('values') or []
        if not values:
            raise UpstreamError("Google Sheets", "No data found in the sheet.")

        headers = [str(h).strip() for h in values[0]]
        if not any(headers):
            raise UpstreamError("Google Sheets", "Header row is missing.")

        # The API trims trailing empty cells; pad rows back to header width
        rows = [
            [str(cell) for cell in row] + [""] * (len(headers) - len(row))
            for row in values[1:]
        ]
        logger.info(f"Fetched {len(rows)} rows from sheet {sheet_id} ({target})")
        return SheetData(headers=headers, rows=rows, sheet_name=target)

    def _first_sheet_name(self, sheet_id: str) -> str:
        meta = self.service.spreadsheets().get(spreadsheetId=sheet_id, includeGridData=False).execute()
        titles = [s.get('properties', {}).get('title') for s in meta.get('sheets', [])]
        titles = [t for t in titles if t]
        if not titles:
            raise UpstreamError("Google Sheets", "No sheets found in the spreadsheet.")
        return titles[0]
