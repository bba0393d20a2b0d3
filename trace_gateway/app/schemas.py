"""
schemas.py - Request and response contracts of the Trace Gateway API.

Field names follow the JSON the dashboard already consumes (camelCase).
Request bodies are validated here; the business layer re-checks the
fields it depends on so it can be called without the HTTP layer.
"""
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from .roles import Role


class OrderType(str, Enum):
    EXPORT = "export"
    IMPORT = "import"
    SALE   = "sale"


class ProductIn(BaseModel):
    """Input schema for POST /products. Manufacturer only."""
    name:        str = Field(..., min_length=1, max_length=200)
    category:    str = Field(..., min_length=1, max_length=100)
    batch:       str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=2000)
    quantity:    int = Field(default=0, ge=0)
    price:       int = Field(default=0, ge=0)


class ProductUpdate(BaseModel):
    """PUT /products/{id}. A status is mirrored only after the chain confirms it."""
    status: Optional[str] = Field(default=None, max_length=64)


class OrderIn(BaseModel):
    type:          OrderType
    productId:     str = Field(..., min_length=1)
    quantity:      int = Field(..., gt=0)
    recipientId:   Optional[str] = None
    recipientName: Optional[str] = None
    supplierName:  Optional[str] = None
    customerInfo:  Optional[str] = None
    notes:         Optional[str] = Field(default=None, max_length=2000)


class OrderStatusUpdate(BaseModel):
    status: str = Field(..., min_length=1, max_length=32)


class ProfileIn(BaseModel):
    """POST /users/register. Username defaults to the local part of the email."""
    username: Optional[str] = Field(default=None, min_length=1, max_length=100)
    email:    Optional[str] = Field(default=None, max_length=254)
    name:     Optional[str] = Field(default=None, max_length=200)
    location: Optional[str] = Field(default=None, max_length=200)


class RoleUpdate(BaseModel):
    role: Role


class ChainProduct(BaseModel):
    """On-chain ProductState as returned by getProduct."""
    name:         str
    batch:        str
    manufacturer: str
    status:       str
    timestamp:    int


class VerifyResult(BaseModel):
    verified:         bool
    productId:        str
    message:          Optional[str] = None
    blockchainData:   Optional[ChainProduct] = None
    databaseData:     Optional[dict] = None
    verificationTime: Optional[str] = None
    note:             Optional[str] = None


class TraceEntry(BaseModel):
    stage:            Optional[str] = None
    company:          Optional[str] = None
    date:             str
    timestamp:        str
    location:         str
    details:          str
    blockchainTxHash: str = Field(..., description="Transaction hash, or N/A when the stage "
                                                   "was recorded without a chain write")


class TraceView(BaseModel):
    productId:           str
    productName:         str
    manufacturer:        str
    batch:               str
    currentStatus:       str
    blockchainVerified:  bool
    blockchainTimestamp: int
    trace:               list[TraceEntry]
