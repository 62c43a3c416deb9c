from sqlalchemy.orm import declarative_base
from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Float,
    Integer,
    String,
    UniqueConstraint,
)


Base = declarative_base()


# ----------------------------
# Catalog
# ----------------------------
class Stadium(Base):
    __tablename__ = "stadiums"
    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    location = Column(String, nullable=False, default="")
    position = Column(Integer, nullable=False, default=0)


class Ticket(Base):
    __tablename__ = "tickets"
    __table_args__ = (
        UniqueConstraint("stadium_id", "kind", "ticket_id"),
    )
    pk = Column(Integer, primary_key=True, autoincrement=True)
    stadium_id = Column(String, nullable=False, index=True)
    kind = Column(String, nullable=False)  # regular | special
    ticket_id = Column(String, nullable=False)
    name = Column(String, nullable=False)
    price = Column(Integer, nullable=False)  # THB
    discount_price = Column(Integer, nullable=True)
    # seats per fight night
    quantity = Column(Integer, nullable=False, default=0)
    days = Column(JSON, nullable=True)  # regular: weekdays, 0 = Sunday
    date = Column(String, nullable=True)  # special: YYYY-MM-DD


class TicketDateStock(Base):
    """Remaining seats of one ticket on one fight night.

    Absent until the first sale (or an explicit adjustment) for that date;
    until then the ticket's nightly quantity applies.
    """
    __tablename__ = "ticket_date_stock"
    __table_args__ = (
        UniqueConstraint("stadium_id", "kind", "ticket_id", "date"),
    )
    pk = Column(Integer, primary_key=True, autoincrement=True)
    stadium_id = Column(String, nullable=False)
    kind = Column(String, nullable=False)
    ticket_id = Column(String, nullable=False)
    date = Column(String, nullable=False)
    remaining = Column(Integer, nullable=False)
    enabled = Column(Boolean, nullable=False, default=True)


# ----------------------------
# Verification and orders
# ----------------------------
class EmailVerification(Base):
    __tablename__ = "email_verifications"
    id = Column(String, primary_key=True)  # 24 hex chars
    email = Column(String, nullable=False, index=True)
    booking_data = Column(JSON, nullable=False)
    created_at = Column(Float, nullable=False)
    expires_at = Column(Float, nullable=False)
    used_at = Column(Float, nullable=True)


class Order(Base):
    __tablename__ = "orders"
    id = Column(String, primary_key=True)
    reference_no = Column(String, nullable=False, unique=True)
    order_no = Column(String, nullable=False)
    payment_id = Column(Integer, nullable=False)
    stadium_id = Column(String, nullable=False)
    date = Column(String, nullable=False)
    ticket_kind = Column(String, nullable=True)
    ticket_id = Column(String, nullable=True)
    zone = Column(String, nullable=True)
    qty = Column(Integer, nullable=False)
    amount = Column(Integer, nullable=False)  # THB
    currency = Column(String, nullable=False, default="thb")
    customer_name = Column(String, nullable=False)
    customer_email = Column(String, nullable=False, index=True)
    customer_phone = Column(String, nullable=False, default="")

    # PAID | PAID_UNFULFILLED
    status = Column(String, nullable=False)
    created_at = Column(Float, nullable=False)
    paid_at = Column(Float, nullable=True)
    ticket_code = Column(String, nullable=True, unique=True)
