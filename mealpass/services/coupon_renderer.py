"""
Meal coupon PDF rendering
"""

import io
from typing import List, Optional

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.lib.units import inch
from reportlab.platypus import SimpleDocTemplate, Table, TableStyle, Paragraph, Spacer, Image

from mealpass.services.qr_service import QRService
from mealpass.services.repositories import ParticipantRecord


class CouponRenderer:
    """Builds one PDF per participant holding a QR coupon for each meal"""

    QR_SIZE = 1.6 * inch

    def render(self, participant: ParticipantRecord, meals: List[str], title: Optional[str] = None) -> bytes:
        buffer = io.BytesIO()
        doc = SimpleDocTemplate(buffer, pagesize=A4, title=f"Meal coupons {participant.ticket_id}")
        styles = getSampleStyleSheet()
        title_style = ParagraphStyle(
            'CouponTitle',
            parent=styles['Heading1'],
            fontSize=16,
            spaceAfter=12,
            alignment=1
        )

        elements = [
            Paragraph(title or participant.event_name or "Meal Coupons", title_style),
        ]

        info_data = [
            ['Name:', participant.name],
            ['Roll No:', participant.roll_no or '-'],
            ['Ticket ID:', participant.ticket_id],
            ['Food Preference:', participant.food_preference or 'Not Specified'],
        ]
        if participant.room_no:
            info_data.append(['Room No:', participant.room_no])

        info_table = Table(info_data, colWidths=[1.6 * inch, 4 * inch])
        info_table.setStyle(TableStyle([
            ('FONTNAME', (0, 0), (0, -1), 'Helvetica-Bold'),
            ('FONTSIZE', (0, 0), (-1, -1), 10),
            ('BOTTOMPADDING', (0, 0), (-1, -1), 6),
        ]))
        elements.append(info_table)
        elements.append(Spacer(1, 20))

        # Two coupons per row
        cells = [self._coupon_cell(participant.ticket_id, meal, styles) for meal in meals]
        rows = [cells[i:i + 2] for i in range(0, len(cells), 2)]
        if rows and len(rows[-1]) == 1:
            rows[-1].append('')

        if rows:
            coupons = Table(rows, colWidths=[3 * inch, 3 * inch])
            coupons.setStyle(TableStyle([
                ('ALIGN', (0, 0), (-1, -1), 'CENTER'),
                ('VALIGN', (0, 0), (-1, -1), 'MIDDLE'),
                ('BOX', (0, 0), (-1, -1), 1, colors.black),
                ('INNERGRID', (0, 0), (-1, -1), 0.5, colors.grey),
                ('BOTTOMPADDING', (0, 0), (-1, -1), 10),
                ('TOPPADDING', (0, 0), (-1, -1), 10),
            ]))
            elements.append(coupons)

        doc.build(elements)
        return buffer.getvalue()

    def _coupon_cell(self, ticket_id: str, meal: str, styles) -> list:
        qr_png = QRService.generate_coupon_qr(ticket_id, meal)
        return [
            Paragraph(f"<b>{meal.upper()}</b>", styles['Heading3']),
            Image(io.BytesIO(qr_png), width=self.QR_SIZE, height=self.QR_SIZE),
            Paragraph(ticket_id, styles['Normal']),
        ]
