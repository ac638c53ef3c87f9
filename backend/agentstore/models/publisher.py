from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from agentstore.database import Base

class Publisher(Base):
    __tablename__ = "publishers"

    id = Column(Integer, primary_key=True)
    publisher_id = Column(String(100), unique=True, nullable=False, index=True)
    display_name = Column(String(200), nullable=False)
    payout_address = Column(String(42), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    agents = relationship("Agent", back_populates="publisher")
