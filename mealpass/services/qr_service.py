"""
QR code generation for meal coupons
"""

import io
import qrcode

from mealpass.core.config import settings

class QRService:
    """Service for generating coupon QR codes"""
    
    @staticmethod
    def coupon_payload(ticket_id: str, meal: str) -> str:
        """The string a scanner reads: '<ticketId>|<meal>'"""
        return f"{ticket_id}|{meal}"
    
    @staticmethod
    def generate_coupon_qr(ticket_id: str, meal: str, format: str = 'PNG') -> bytes:
        """Generate the QR image for one meal coupon"""
        qr = qrcode.QRCode(
            version=1,
            error_correction=qrcode.constants.ERROR_CORRECT_M,
            box_size=10,
            border=4,
        )
        qr.add_data(QRService.coupon_payload(ticket_id, meal))
        qr.make(fit=True)
        
        img = qr.make_image(fill_color="black", back_color="white")
        
        buffer = io.BytesIO()
        img.save(buffer, format=format)
        
        return buffer.getvalue()
    
    @staticmethod
    def get_qr_url(ticket_id: str, meal: str) -> str:
        """Public URL of a coupon's QR image"""
        return f"{settings.BASE_URL}/coupons/{ticket_id}/{meal}.png"
