from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field, field_validator

class CodeGenerate(BaseModel):
    value: int = Field(gt=0)
    count: int = Field(default=1, ge=1)

class CodeRedeem(BaseModel):
    code: str = Field(min_length=1)

    @field_validator("code")
    @classmethod
    def normalize(cls, v: str) -> str:
        v = v.strip().upper()
        if not v:
            raise ValueError("code must not be blank")
        return v

class GeneratedCode(BaseModel):
    id: str
    code: str
    value: int

class RedeemCodeRead(GeneratedCode):
    is_used: bool = False
    used_by: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True

class RedeemResponse(BaseModel):
    message: str
    value: int
    credits: int
