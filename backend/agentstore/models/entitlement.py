from sqlalchemy import Column, Integer, String, Numeric, Boolean, DateTime, Enum, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import enum
from agentstore.database import Base
from agentstore.models.agent import PricingModel

class ConfirmationStatus(str, enum.Enum):
    preconfirmed = "preconfirmed"
    confirmed = "confirmed"
    revoked = "revoked"

class Entitlement(Base):
    __tablename__ = "entitlements"

    id = Column(Integer, primary_key=True)
    agent_id = Column(Integer, ForeignKey("agents.id"), nullable=False, index=True)
    wallet_address = Column(String(42), nullable=False, index=True)
    entitlement_token = Column(String(80), unique=True, nullable=False)
    pricing_model = Column(Enum(PricingModel), nullable=False)
    amount_paid = Column(Numeric(38, 18), nullable=False)
    currency = Column(String(10), default="USDC")
    is_active = Column(Boolean, default=True)
    confirmation_status = Column(Enum(ConfirmationStatus), default=ConfirmationStatus.preconfirmed)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    verification_deadline = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    agent = relationship("Agent", back_populates="entitlements")
    transactions = relationship("Transaction", back_populates="entitlement")
