from datetime import datetime, timezone
from sqlalchemy import Column, Integer, String, BigInteger, DateTime, ForeignKey, Enum as SAEnum
from sqlalchemy.orm import declarative_base
from common.schemas import OrderStatus

Base = declarative_base()

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, autoincrement=True)
    login = Column(String(255), nullable=False, unique=True)
    password_hash = Column(String(255), nullable=False)

class Order(Base):
    __tablename__ = "orders"
    number = Column(String(64), primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    status = Column(SAEnum(OrderStatus, name="order_status", native_enum=False, length=16),
                    nullable=False, default=OrderStatus.NEW, index=True)
    accrual = Column(BigInteger, nullable=True)  # hundredths of a point, PROCESSED only
    uploaded_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

class LedgerEntry(Base):
    """One link of a user's append-only balance chain.

    (user_id, seq) is the primary key: two writers that both read entry ``seq``
    as the latest cannot both append ``seq + 1``.
    """
    __tablename__ = "ledger_entries"
    user_id = Column(Integer, ForeignKey("users.id"), primary_key=True)
    seq = Column(BigInteger, primary_key=True, autoincrement=False)
    order_number = Column(String(64), nullable=True, index=True)
    amount = Column(BigInteger, nullable=False)      # signed: credit > 0, debit < 0
    balance = Column(BigInteger, nullable=False)     # running balance after this entry
    withdrawn = Column(BigInteger, nullable=False)   # running total of debits
    processed_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
