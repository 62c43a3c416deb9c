# Legacy flat-rate zones and the flow's localized messages.
from typing import Dict, Optional, TypedDict


class Zone(TypedDict):
    id: str
    name: str
    description: str
    price: int  # THB


ZONE_PRICES = {"vip": 2500, "club": 2000, "standard": 1500}

ZONE_TEXT = {
    "en": {
        "vip": ("VIP Ringside", "Best view, closest to the ring"),
        "club": ("Club Class", "Excellent view with premium seating"),
        "standard": ("Standard", "Great atmosphere and clear view"),
    },
    "th": {
        "vip": ("VIP Ringside", "วิวดีที่สุด ใกล้เวทีที่สุด"),
        "club": ("Club Class", "วิวดีเยี่ยมพร้อมที่นั่งพรีเมียม"),
        "standard": ("Standard", "บรรยากาศดีและมองเห็นชัดเจน"),
    },
}

MESSAGES: Dict[str, Dict[str, str]] = {
    "en": {
        "select_all_fields": "Please select stadium, date, and zone",
        "max_tickets": "Maximum {max} tickets allowed",
        "only_available": "Only {available} tickets available",
        "min_tickets": "Please select at least 1 ticket",
        "fill_all_fields": "Please fill in all fields",
        "invalid_email": "Please enter a valid email address",
        "invalid_date": "Please choose a valid date",
        "date_closed": "Tickets for this date are no longer on sale",
        "verification_failed":
            "Failed to send verification email. Please try again.",
        "verification_sent":
            "Verification email sent successfully. Please check your email.",
        "payment_failed": "Failed to generate QR code",
        "checkout_failed": "Failed to open payment page",
        "refresh_failed": "Failed to refresh QR code",
        "refresh_limit":
            "QR code refresh limit reached. Please restart the transaction.",
        "expired": "Payment time has expired. Please start over.",
        "payment_declined":
            "The payment was not completed. Please start over.",
        "sold_out": "Sorry, this ticket is sold out.",
        "stalled":
            "We can't reach the payment service right now. "
            "Your payment is safe; check again in a moment.",
    },
    "th": {
        "select_all_fields": "กรุณาเลือกสนาม วันที่ และโซน",
        "max_tickets": "จำนวนตั๋วสูงสุดที่สามารถซื้อได้คือ {max} ใบ",
        "only_available": "จำนวนตั๋วที่เหลือมีเพียง {available} ใบ",
        "min_tickets": "กรุณาเลือกจำนวนตั๋วอย่างน้อย 1 ใบ",
        "fill_all_fields": "กรุณากรอกข้อมูลให้ครบถ้วน",
        "invalid_email": "กรุณากรอกอีเมลให้ถูกต้อง",
        "invalid_date": "กรุณาเลือกวันที่ให้ถูกต้อง",
        "date_closed": "ปิดการขายตั๋วสำหรับวันนี้แล้ว",
        "verification_failed":
            "ไม่สามารถส่งอีเมลยืนยันได้ กรุณาลองใหม่อีกครั้ง",
        "verification_sent":
            "ส่งอีเมลยืนยันสำเร็จ กรุณาตรวจสอบอีเมลของคุณ",
        "payment_failed": "ไม่สามารถสร้าง QR Code ได้",
        "checkout_failed": "ไม่สามารถเปิดหน้าชำระเงินได้",
        "refresh_failed": "ไม่สามารถรีเฟรช QR Code ได้",
        "refresh_limit":
            "รีเฟรช QR Code ครบจำนวนแล้ว กรุณาเริ่มทำรายการใหม่",
        "expired": "หมดเวลาชำระเงิน กรุณาเริ่มใหม่อีกครั้ง",
        "payment_declined": "การชำระเงินไม่สำเร็จ กรุณาเริ่มใหม่อีกครั้ง",
        "sold_out": "ขออภัย ตั๋วประเภทนี้ขายหมดแล้ว",
        "stalled":
            "ไม่สามารถเชื่อมต่อระบบชำระเงินได้ในขณะนี้ "
            "กรุณาตรวจสอบอีกครั้งในภายหลัง",
    },
}


def message(key: str, language: str = "en", **kw) -> str:
    table = MESSAGES.get(language, MESSAGES["en"])
    return table[key].format(**kw)


def get_zones(language: str = "en") -> list[Zone]:
    text = ZONE_TEXT.get(language, ZONE_TEXT["en"])
    return [
        {"id": zid, "name": text[zid][0], "description": text[zid][1],
         "price": price}
        for zid, price in ZONE_PRICES.items()
    ]


def find_zone(zone_id: str, language: str = "en") -> Optional[Zone]:
    for z in get_zones(language):
        if z["id"] == zone_id:
            return z
    return None
