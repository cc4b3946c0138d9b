"""Authentication Pydantic Schemas"""

from typing import Optional

from pydantic import BaseModel


class Principal(BaseModel):
    """Caller identity taken from a validated access token"""
    subject: str
    role: Optional[str] = None
