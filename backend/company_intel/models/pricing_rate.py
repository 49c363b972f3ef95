from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Float

from ..core.db import Base


class PricingRate(Base):
    __tablename__ = "pricing_rates"

    id = Column(Integer, primary_key=True, autoincrement=True)
    provider = Column(String(32), nullable=False, index=True)
    model = Column(String(128), nullable=False, index=True)

    # USD per 1M tokens
    input_per_mtok = Column(Float, nullable=False)
    output_per_mtok = Column(Float, nullable=False)
    cache_read_per_mtok = Column(Float, nullable=True)
    cache_write_per_mtok = Column(Float, nullable=True)

    effective_from = Column(DateTime, default=datetime.utcnow, nullable=False)
    effective_to = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
