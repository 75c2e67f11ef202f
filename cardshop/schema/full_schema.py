import enum
from sqlalchemy import JSON, Boolean, DateTime, Float, ForeignKey, Index, Integer, Text, BigInteger, text
from datetime import datetime
from typing import List, Optional
from sqlmodel import Column, SQLModel, Field, String
from cardshop.common.utils import now


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class RefundStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ProductStatus(enum.IntEnum):
    OFF_SHELF = 0
    ON_SALE = 1


UNLIMITED_STOCK = -1


class Users(SQLModel, table=True):
    __tablename__ = "users"

    id: Optional[int] = Field(default=None, primary_key=True)
    username: str = Field(sa_column=Column(String(128), nullable=False, unique=True))
    # points are escrowed on orders and returned on cancel/refund
    points: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))
    created_at: datetime = Field(default_factory=now,
        sa_column=Column(DateTime(timezone=True), nullable=False,default=now))


class Product(SQLModel, table=True):
    __tablename__ = "products"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(sa_column=Column(String(255), nullable=False))
    description: Optional[str] = Field(default=None, sa_column=Column(Text(), nullable=True))
    price: float = Field(default=0.0, sa_column=Column(Float, nullable=False, default=0.0))
    # -1 = unlimited; only authoritative for consumable (card_mode False) products
    stock: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))
    # True = cards are shared codes handed out in rotation and never consumed
    card_mode: bool = Field(default=False, sa_column=Column(Boolean, nullable=False, default=False))
    purchase_limit: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))
    sold_count: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))
    status: int = Field(default=ProductStatus.ON_SALE.value, sa_column=Column(Integer, nullable=False, default=1, index=True))
    created_at: datetime = Field(default_factory=now,
        sa_column=Column(DateTime(timezone=True), nullable=False,default=now))
    updated_at: datetime = Field(default_factory=now,
        sa_column=Column(DateTime(timezone=True), nullable=False,default=now, onupdate=now))


class CardRecord(SQLModel, table=True):
    __tablename__ = "cards"

    id: Optional[int] = Field(default=None, primary_key=True)
    product_id: int = Field(sa_column=Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False))
    content: str = Field(sa_column=Column(String(500), nullable=False))
    used: bool = Field(default=False, sa_column=Column(Boolean, nullable=False, default=False))
    # null while unused
    order_id: Optional[int] = Field(default=None, sa_column=Column(Integer, ForeignKey("orders.id", ondelete="SET NULL"), nullable=True, index=True))
    created_at: datetime = Field(default_factory=now,
        sa_column=Column(DateTime(timezone=True), nullable=False,default=now))

    __table_args__ = (
        Index("ix_cards_product_used", "product_id", "used"),
    )


class Orders(SQLModel, table=True):
    __tablename__ = "orders"

    id: Optional[int] = Field(default=None, primary_key=True)
    order_no: str = Field(sa_column=Column(String(64), nullable=False, unique=True, index=True))
    user_id: Optional[int] = Field(default=None, sa_column=Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), index=True, nullable=True))
    product_id: int = Field(sa_column=Column(Integer, ForeignKey("products.id", ondelete="RESTRICT"), nullable=False, index=True))
    product_name: str = Field(default="", sa_column=Column(String(255), nullable=False, default=""))
    quantity: int = Field(default=1, sa_column=Column(Integer, nullable=False, default=1))
    amount: float = Field(default=0.0, sa_column=Column(Float, nullable=False, default=0.0))
    points_used: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))
    status: str = Field(default=OrderStatus.PENDING.value, sa_column=Column(String(16), nullable=False, index=True))
    epay_trade_no: Optional[str] = Field(default=None, sa_column=Column(String(128), nullable=True))
    # snapshot of what was handed over; present iff status == paid
    delivered_cards: Optional[List[str]] = Field(default=None, sa_column=Column(JSON, nullable=True))
    contact: Optional[str] = Field(default=None, sa_column=Column(String(255), nullable=True))
    created_at: datetime = Field(default_factory=now, sa_column=Column(DateTime(timezone=True), nullable=False, default=now, index=True))
    paid_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    cancelled_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    refunded_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))


class InventoryLock(SQLModel, table=True):
    __tablename__ = "inventory_locks"

    id: Optional[int] = Field(default=None, primary_key=True)
    order_id: int = Field(sa_column=Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, unique=True))
    product_id: int = Field(sa_column=Column(Integer, nullable=False, index=True))
    quantity: int = Field(default=0, sa_column=Column(Integer, nullable=False))
    # epoch seconds
    expires_at: int = Field(sa_column=Column(BigInteger, nullable=False, index=True))


class RefundRequest(SQLModel, table=True):
    __tablename__ = "refund_requests"

    id: Optional[int] = Field(default=None, primary_key=True)
    order_id: int = Field(sa_column=Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True))
    status: str = Field(default=RefundStatus.PENDING.value, sa_column=Column(String(16), nullable=False))
    note: Optional[str] = Field(default=None, sa_column=Column(Text(), nullable=True))
    requested_at: datetime = Field(default_factory=now, sa_column=Column(DateTime(timezone=True), nullable=False, default=now))
    processed_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))

    __table_args__ = (
        # at most one pending request per order
        Index(
            "uq_refund_requests_order_pending",
            "order_id",
            unique=True,
            sqlite_where=text("status = 'pending'"),
            postgresql_where=text("status = 'pending'"),
        ),
    )


class PaymentLog(SQLModel, table=True):
    __tablename__ = "payment_logs"

    id: Optional[int] = Field(default=None, primary_key=True)
    order_id: Optional[int] = Field(default=None, sa_column=Column(Integer, nullable=True, index=True))
    order_no: Optional[str] = Field(default=None, sa_column=Column(String(64), nullable=True, index=True))
    event_type: str = Field(sa_column=Column(String(32), nullable=False))
    payload: Optional[str] = Field(default=None, sa_column=Column(Text(), nullable=True))
    result: str = Field(sa_column=Column(String(16), nullable=False))
    message: Optional[str] = Field(default=None, sa_column=Column(Text(), nullable=True))
    created_at: datetime = Field(default_factory=now, sa_column=Column(DateTime(timezone=True), nullable=False, default=now))
