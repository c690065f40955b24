from typing import Optional
from sqlalchemy.engine import Engine

from .db import Base, get_engine
from .hospital import Hospital
from .cold_email import ColdEmail

def create_all(engine: Optional[Engine] = None):
    Base.metadata.create_all(bind=engine or get_engine())
