"""
Excel processing service for roster import/export
"""

import io
from typing import Any, List, Sequence, Tuple
import pandas as pd

from mealpass.core.exceptions import ValidationError
from mealpass.core.meals import MEAL_SLOTS
from mealpass.services.column_rules import resolve_columns
from mealpass.services.repositories import ParticipantRecord

class ExcelService:
    """Service for handling roster spreadsheets"""
    
    TEMPLATE_COLUMNS = [
        'Name', 'Email', 'Roll No', 'Department', 'College',
        'Year', 'Phone', 'Food Preference', 'Room No'
    ]
    
    @staticmethod
    def create_template() -> bytes:
        """Create Excel template with the recognised columns"""
        df = pd.DataFrame(columns=ExcelService.TEMPLATE_COLUMNS)
        
        # Add sample data for guidance
        sample_data = [
            ['Sample Student 1', 'student1@example.edu', '24CS001', 'CSE', 'Sample College', 'II', '9000000001', 'Veg', 'A-101'],
            ['Sample Student 2', 'student2@example.edu', '24EC045', 'ECE', 'Sample College', 'I', '9000000002', 'Non-Veg', 'B-204'],
        ]
        
        for row in sample_data:
            df.loc[len(df)] = row
        
        buffer = io.BytesIO()
        with pd.ExcelWriter(buffer, engine='openpyxl') as writer:
            df.to_excel(writer, index=False, sheet_name='Roster')
        
        return buffer.getvalue()
    
    @staticmethod
    def validate_roster_structure(headers: Sequence[Any]) -> Tuple[bool, List[str]]:
        """A roster needs at least one column that identifies a person"""
        errors = []
        column_map = resolve_columns(headers)
        
        if not any(str(h or "").strip() for h in headers):
            errors.append("Header row is empty")
        elif not (column_map.emails or column_map.index("name") is not None or column_map.index("roll_no") is not None):
            errors.append("No name, email or roll number column found")
        
        return len(errors) == 0, errors
    
    @staticmethod
    def read_roster(file_content: bytes, filename: str = "roster.xlsx") -> Tuple[List[str], List[List[str]]]:
        """Parse an uploaded .xlsx/.xls/.csv into (headers, rows of text)"""
        try:
            if filename.lower().endswith('.csv'):
                df = pd.read_csv(io.BytesIO(file_content), dtype=str, keep_default_na=False)
            else:
                # First sheet only
                df = pd.read_excel(io.BytesIO(file_content), dtype=str, keep_default_na=False)
        except Exception as e:
            raise ValidationError(f"Could not read spreadsheet: {e}", error_code="INVALID_FILE")
        
        if df.empty:
            raise ValidationError("Sheet is empty", error_code="EMPTY_SHEET")
        
        headers = [str(col).strip() for col in df.columns]
        valid, errors = ExcelService.validate_roster_structure(headers)
        if not valid:
            raise ValidationError("Roster validation failed", details={"errors": errors})
        
        rows = df.fillna("").astype(str).values.tolist()
        return headers, rows
    
    @staticmethod
    def export_participants(participants: List[ParticipantRecord]) -> bytes:
        """Export participants with one Yes/No column per meal"""
        data = []
        for p in sorted(participants, key=lambda x: (x.name or "").lower()):
            row = {
                'Ticket ID': p.ticket_id,
                'Name': p.name,
                'Email': p.email,
                'Roll No': p.roll_no,
                'Department': p.department,
                'College': p.college,
                'Food Preference': p.food_preference,
                'Room No': p.room_no,
                'Status': p.status,
            }
            for meal in MEAL_SLOTS:
                row[meal.title()] = 'Yes' if p.has_used(meal) else 'No'
            data.append(row)
        
        df = pd.DataFrame(data, columns=[
            'Ticket ID', 'Name', 'Email', 'Roll No', 'Department', 'College',
            'Food Preference', 'Room No', 'Status', *[meal.title() for meal in MEAL_SLOTS]
        ])
        
        buffer = io.BytesIO()
        with pd.ExcelWriter(buffer, engine='openpyxl') as writer:
            df.to_excel(writer, index=False, sheet_name='Participants')
        
        return buffer.getvalue()
