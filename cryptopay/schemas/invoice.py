from typing import List, Optional, Union

from pydantic import BaseModel, Field


class InvoiceCreateRequest(BaseModel):
    merchant_id: str = Field(default="", alias="m")
    amount: Union[str, float, int] = Field(default="", alias="a")
    currency: str = Field(default="", alias="c")
    reference: Optional[str] = Field(default=None, alias="r")
    base_url: Optional[str] = Field(default=None, alias="u")
    amount_is_usd: bool = Field(default=False, alias="usd")
    network: Optional[str] = Field(default=None, alias="n")
    customer_email: Optional[str] = Field(default=None, alias="e")

    model_config = {"populate_by_name": True}


class InvoiceCreatedResponse(BaseModel):
    public_token: str


class PublicInvoiceRequest(BaseModel):
    t: str = ""


class SiblingInvoice(BaseModel):
    currency: str
    public_token: str
    status: str


class PublicInvoiceResponse(BaseModel):
    invoice: dict
    siblings: List[SiblingInvoice]


class WalletCreate(BaseModel):
    currency: str
    address: str
    network: Optional[str] = None


class WalletResponse(BaseModel):
    id: str
    merchant_id: str
    currency: str
    network: str
    address: str

    class Config:
        from_attributes = True
