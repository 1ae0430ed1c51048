from pydantic import BaseModel, EmailStr, Field, field_validator
from typing import Optional
from datetime import datetime
from storefront.shared.security_config import validate_password_strength, sanitize_input

class Address(BaseModel):
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    country: Optional[str] = None

class AddressInput(Address):
    @field_validator('street', 'city', 'state', 'zip_code', 'country', mode='before')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

class UserRegister(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=8)
    address: Optional[AddressInput] = None

    @field_validator('password')
    def password_complexity(cls, v):
        if not validate_password_strength(v):
            raise ValueError('Password must be at least 8 characters long and contain uppercase, lowercase, and numbers')
        return v

    @field_validator('name', mode='before')
    def sanitize_name(cls, v):
        return sanitize_input(v)

    @field_validator('email')
    def normalize_email(cls, v):
        return v.strip().lower()

class UserLogin(BaseModel):
    email: EmailStr
    password: str

    @field_validator('email')
    def normalize_email(cls, v):
        return v.strip().lower()

class Token(BaseModel):
    token: str

class ProfileUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    address: Optional[AddressInput] = None

    @field_validator('name', mode='before')
    def sanitize_name(cls, v):
        return sanitize_input(v)

class UserResponse(BaseModel):
    id: str
    name: str
    email: EmailStr
    address: Optional[Address] = None
    role: str
    created_at: datetime
