"""Standardized API Response Schemas"""

from typing import Generic, TypeVar, Optional, Any, Dict
from pydantic import BaseModel


T = TypeVar('T')


class SuccessResponse(BaseModel, Generic[T]):
    """
    Standard success response envelope.

    Example:
        {
            "success": true,
            "data": {...},
            "message": "Invoice sent"
        }
    """
    success: bool = True
    data: Optional[T] = None
    message: str = "Operation successful"


class ErrorDetail(BaseModel):
    """Error details structure"""
    code: str
    message: str
    context: Optional[Dict[str, Any]] = None


class ErrorResponse(BaseModel):
    """
    Standard error response envelope.

    Example:
        {
            "success": false,
            "error": {
                "code": "OVERPAYMENT",
                "message": "Payment amount 600.00 exceeds remaining balance 400.00 on invoice ...",
                "context": {"invoice_id": "...", "amount": "600.00", "remaining": "400.00"}
            }
        }
    """
    success: bool = False
    error: ErrorDetail
