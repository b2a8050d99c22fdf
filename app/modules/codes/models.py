from sqlalchemy import Column, String, Integer, Boolean, DateTime, ForeignKey
from app.core.db import Base
from app.modules.auth.models import new_id

class RedeemCode(Base):
    __tablename__ = "redeem_codes"

    id = Column(String(36), primary_key=True, default=new_id)
    code = Column(String(64), unique=True, index=True, nullable=False)
    value = Column(Integer, nullable=False)
    is_used = Column(Boolean, default=False, nullable=False)
    used_by = Column(String(36), ForeignKey("users.id"), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False)
