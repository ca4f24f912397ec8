"""Pydantic schemas for account signup and login."""
from datetime import datetime

from pydantic import BaseModel, Field


class SignupRequest(BaseModel):
    """Request body for creating an account.

    Fields are validated by AccountService rather than by pydantic so that
    blank values produce a 400 with a readable message instead of a 422.
    """
    username: str = ""
    firstname: str = ""
    lastname: str = ""
    password: str = ""


class LoginRequest(BaseModel):
    """Request body for verifying credentials."""
    username: str = ""
    password: str = ""


class Account(BaseModel):
    """A stored account, without credentials."""
    username: str = Field(..., description="Unique login name")
    firstname: str = Field(..., description="First name")
    lastname: str = Field(..., description="Last name")
    created_at: datetime = Field(..., description="When the account was created")


class VerifiedUser(BaseModel):
    """Identity returned after a successful credential check."""
    username: str
    firstname: str
