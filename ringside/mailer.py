"""Outgoing mail for verification links and booking confirmations.

There is no SMTP here. `log` (the default) only writes a line per message.
`outbox` keeps the most recent messages in memory so the demo (and the flow
client) can fish the verification token back out through `/mockmail/latest`;
anyone who can reach that endpoint can read every token, so never enable it
outside a demo.
"""
import os
from collections import deque
from datetime import datetime, timezone
from typing import Any, Deque, Dict, Optional

from jinja2 import DictLoader, Environment, select_autoescape

from .logs import booking_log

MAIL_BACKEND = os.environ.get("MAIL_BACKEND", "log").lower()
# the outbox only keeps the most recent mails
OUTBOX_SIZE = int(os.environ.get("OUTBOX_SIZE", "1000"))
VERIFY_URL = os.environ.get(
    "VERIFY_URL", "http://localhost:8000/verify-email"
)

TEMPLATES = {
    "verify.txt": """\
Hello {{ name }},

please confirm your e-mail address to continue your booking:

  {{ stadium }} | {{ date_display }} | {{ ticket }} x {{ quantity }}
  Total: {{ "{:,}".format(total_price) }} THB

{{ verify_url }}?token={{ token }}

The link is valid for 30 minutes and can be used once.
""",
    "confirmation.txt": """\
Hello {{ name }},

your payment was received. See you at ringside!

  Reference No.: {{ reference_no }}
  Order No.:     {{ order_no }}
  {{ stadium }} | {{ date }} | {{ ticket }} x {{ quantity }}
  Paid: {{ "{:,}".format(amount) }} THB
{% if ticket_code %}  Ticket code:   {{ ticket_code }}
{% endif %}""",
}

env = Environment(loader=DictLoader(TEMPLATES),
                  autoescape=select_autoescape(["html"]))


class Mailer:
    def __init__(self, backend: str = MAIL_BACKEND,
                 verify_url: str = VERIFY_URL,
                 outbox_size: int = OUTBOX_SIZE):
        self.backend = backend
        self.verify_url = verify_url
        self.sent: Deque[Dict[str, Any]] = deque(maxlen=outbox_size)

    async def send(self, to: str, subject: str, body: str,
                   token: Optional[str] = None) -> bool:
        if self.backend == "outbox":
            self.sent.append({
                "to": to,
                "subject": subject,
                "body": body,
                "token": token,
                "sent_at": datetime.now(timezone.utc),
            })
        booking_log.info("mail to={} subject={!r}", to, subject)
        return True

    async def send_verification(self, booking: Dict[str, Any],
                                token: str) -> bool:
        ticket = (booking.get("ticketData") or {}).get("name") \
            or (booking.get("zoneData") or {}).get("name") \
            or booking.get("zone") or ""
        stadium = (booking.get("stadiumData") or {}).get("name") \
            or booking.get("stadium", "")
        body = env.get_template("verify.txt").render(
            name=booking.get("name", ""),
            stadium=stadium,
            date_display=booking.get("dateDisplay") or booking.get("date"),
            ticket=ticket,
            quantity=booking.get("quantity", 1),
            total_price=int(booking.get("totalPrice") or 0),
            verify_url=self.verify_url,
            token=token,
        )
        return await self.send(booking["email"], "Confirm your e-mail",
                               body, token=token)

    async def send_confirmation(self, **order: Any) -> bool:
        body = env.get_template("confirmation.txt").render(**order)
        return await self.send(
            order["email"],
            f"Booking confirmed - Ref {order['reference_no']}",
            body,
        )

    def latest_token(self, email: str) -> Optional[str]:
        email = email.strip().lower()
        for msg in reversed(self.sent):
            if msg["token"] and msg["to"].lower() == email:
                return msg["token"]
        return None
