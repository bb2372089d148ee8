from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict


class _Request(BaseModel):
    model_config = ConfigDict(extra="forbid")


class CreateDeclarationRequest(_Request):
    # presence and format are checked by the authorization service so the
    # first failing field is reported in a fixed order
    owner: Optional[str] = None
    destination: Optional[str] = None
    amount: Optional[str] = None
    nonce: Optional[str] = None
    deadline: Optional[int] = None
    signature: Optional[str] = None
    textVersion: Optional[str] = None


class AttachTransactionRequest(_Request):
    txHash: str


class MarkExecutedRequest(_Request):
    nonce: str
    txHash: str
    outcome: Literal["executed", "failed"] = "executed"
