from sqlalchemy import Column, Integer, String, Numeric, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from agentstore.database import Base


class TransactionStatus:
    pending = "pending"
    confirmed = "confirmed"
    failed = "failed"


class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True)
    entitlement_id = Column(Integer, ForeignKey("entitlements.id", ondelete="CASCADE"), nullable=True)
    tx_hash = Column(String(66), unique=True, nullable=False, index=True)
    from_address = Column(String(42), nullable=False)
    to_address = Column(String(42), nullable=False)
    amount = Column(Numeric(38, 18), nullable=False)
    currency = Column(String(10), default="USDC")
    platform_fee = Column(Numeric(38, 18), nullable=False)
    publisher_amount = Column(Numeric(38, 18), nullable=False)
    status = Column(String(20), default=TransactionStatus.pending)
    block_number = Column(Integer, nullable=True)
    confirmations = Column(Integer, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    entitlement = relationship("Entitlement", back_populates="transactions")
