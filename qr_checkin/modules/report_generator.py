"""
Report Generator Module - QR Event Check-in System

Attendance exports for event administrators. The registration list of one
event is flattened into a pandas DataFrame and written as CSV or as an Excel
workbook with a summary sheet.
"""

import pandas as pd
import io
from datetime import datetime
from typing import Dict, Any
import logging

from .attendance_store import sanitize_title


class ReportGenerator:
    """
    Builds downloadable attendance reports in memory.
    """

    COLUMNS = ['name', 'email', 'registered_at', 'checked_in', 'check_in_time']

    FORMATS = {
        'csv': ('csv', 'text/csv'),
        'excel': ('xlsx', 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet')
    }

    def __init__(self, event_manager, attendance_store):
        """
        Initialize the report generator.

        Args:
            event_manager: Event lookups
            attendance_store: Registration storage
        """
        self.events = event_manager
        self.store = attendance_store
        self.logger = logging.getLogger(__name__)

    def build_attendance_frame(self, event: Dict[str, Any]) -> pd.DataFrame:
        registrations = self.store.list_registrations(event)
        df = pd.DataFrame(registrations, columns=self.COLUMNS)
        df['checked_in'] = df['checked_in'].astype(bool)
        return df

    def export_event_attendance(self, event_id: str, output_format: str = 'csv') -> Dict[str, Any]:
        """
        Export the attendance list of an event.

        Args:
            event_id (str): Event to export
            output_format (str): 'csv' or 'excel'

        Returns:
            Dict[str, Any]: filename, content bytes and mimetype on success
        """
        if output_format not in self.FORMATS:
            return {'success': False, 'error': f'Unsupported output format: {output_format}'}

        event = self.events.get_event(event_id)
        if not event:
            return {'success': False, 'error': 'Event not found', 'error_type': 'not_found'}

        df = self.build_attendance_frame(event)
        extension, mimetype = self.FORMATS[output_format]
        filename = (f"attendance_{sanitize_title(event['title'])}_"
                    f"{datetime.now().strftime('%Y%m%d_%H%M%S')}.{extension}")

        if output_format == 'csv':
            content = df.to_csv(index=False).encode('utf-8')
        else:
            buffer = io.BytesIO()
            with pd.ExcelWriter(buffer, engine='openpyxl') as writer:
                df.to_excel(writer, sheet_name='Attendance', index=False)

                summary = pd.DataFrame([{
                    'Event': event['title'],
                    'Date': event['event_date'],
                    'Time': event['event_time'],
                    'Location': event['location'],
                    'Registered': len(df),
                    'Checked In': int(df['checked_in'].sum())
                }])
                summary.to_excel(writer, sheet_name='Summary', index=False)
            content = buffer.getvalue()

        self.logger.info(f"Attendance export generated: {filename} ({len(df)} rows)")
        return {
            'success': True,
            'filename': filename,
            'content': content,
            'mimetype': mimetype,
            'rows': len(df)
        }
