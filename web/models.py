"""
Pydantic response models for the connector API.
"""
from typing import Any, Dict, List, Optional
from pydantic import BaseModel


class AuthorizationResponse(BaseModel):
    """Authorization URL for a new connect flow"""
    auth_url: str
    message: str


class AccountsResponse(BaseModel):
    """Display roster of connected accounts"""
    accounts: List[Dict[str, Any]]
    count: int
    limit: int


class MessageResponse(BaseModel):
    success: bool
    message: str


class ErrorResponse(BaseModel):
    """Error body; never carries a token"""
    error: str
    error_description: str
    provider: Optional[str] = None
    provider_error: Optional[str] = None
    requires_reauth: Optional[bool] = None
