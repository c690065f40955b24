from sqlalchemy import Boolean, Column, Integer, JSON, Float, String, Text, TIMESTAMP, false
from sqlalchemy.sql import func
import uuid
from .db import Base


def _new_id() -> str:
    return str(uuid.uuid4())


class Hospital(Base):
    __tablename__ = "hospitals"
    id = Column(String(36), primary_key=True, default=_new_id)
    name = Column(String, index=True)
    city = Column(String, index=True)
    website = Column(String)
    address = Column(Text)
    linkedin = Column(String)
    emails = Column(JSON, default=list)
    phones = Column(JSON, default=list)
    telemedicine = Column(Boolean, nullable=True)
    status = Column(String, default="new", server_default="new")   # 'new'|'closed' ('reached' counted as closed)
    manual_rating = Column(Integer, nullable=True)  # 0..5
    score = Column(Float, nullable=True)   # manual_rating * 20
    cold_emailed = Column(Boolean, default=False, server_default=false())
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now())
