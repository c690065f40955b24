from sqlalchemy import Column, String, Text, TIMESTAMP
from sqlalchemy.sql import func
import uuid
from .db import Base

class ColdEmail(Base):
    __tablename__ = "cold_emails"
    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    hospital_id = Column(String(36), index=True, nullable=False)
    acted_by = Column(String, nullable=True)
    note = Column(Text)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
