from sqlalchemy import Column, Integer, String, Numeric, Boolean, DateTime, Enum, JSON, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import enum
from agentstore.database import Base

class AgentType(str, enum.Enum):
    open = "open"
    proprietary = "proprietary"

class PricingModel(str, enum.Enum):
    free = "free"
    one_time = "one_time"
    subscription = "subscription"
    usage_based = "usage_based"

class Agent(Base):
    __tablename__ = "agents"

    id = Column(Integer, primary_key=True)
    agent_id = Column(String(200), unique=True, nullable=False, index=True)
    publisher_id = Column(Integer, ForeignKey("publishers.id"), nullable=False)
    name = Column(String(200), nullable=False)
    type = Column(Enum(AgentType), default=AgentType.open)
    pricing_model = Column(Enum(PricingModel), default=PricingModel.free)
    price_usd = Column(Numeric(18, 6), default=0)
    install = Column(JSON, nullable=True)
    is_published = Column(Boolean, default=False)
    download_count = Column(Integer, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    publisher = relationship("Publisher", back_populates="agents", lazy="joined")
    entitlements = relationship("Entitlement", back_populates="agent")

    @property
    def is_free(self) -> bool:
        return self.pricing_model == PricingModel.free or not self.price_usd
