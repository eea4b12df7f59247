"""In-memory Settlement Network for local development and integration tests"""

import uuid
from typing import Dict, Optional

from fastapi import FastAPI, Header, HTTPException
from pydantic import BaseModel, Field

app = FastAPI(title="Mock Settlement Network", version="1.0.0")

# Flat fee charged per transfer, in the same unit as amounts
TRANSFER_FEE = 0.0

balances: Dict[str, float] = {}
transfers: Dict[str, dict] = {}
transfers_by_key: Dict[str, str] = {}


class FaucetRequest(BaseModel):
    address: str
    amount: float = Field(..., gt=0)


class TransferRequest(BaseModel):
    from_address: str
    to_address: str
    amount: float = Field(..., gt=0)
    gas_price_wei: int = 0
    gas_limit: int = 0
    chain_id: int = 0


def reset() -> None:
    balances.clear()
    transfers.clear()
    transfers_by_key.clear()


@app.get("/health")
def health(): return {"status": "ok"}


@app.post("/faucet")
def faucet(body: FaucetRequest):
    balances[body.address] = balances.get(body.address, 0.0) + body.amount
    return {"address": body.address, "balance": balances[body.address]}


@app.post("/transfers")
def submit_transfer(body: TransferRequest, idempotency_key: Optional[str] = Header(None)):
    # Same key returns the original transfer, funds move at most once
    if idempotency_key and idempotency_key in transfers_by_key:
        return transfers[transfers_by_key[idempotency_key]]

    if balances.get(body.from_address, 0.0) < body.amount + TRANSFER_FEE:
        raise HTTPException(status_code=422, detail="insufficient funds")

    balances[body.from_address] -= body.amount + TRANSFER_FEE
    balances[body.to_address] = balances.get(body.to_address, 0.0) + body.amount

    reference = f"0x{uuid.uuid4().hex}"
    transfers[reference] = {"reference": reference, "status": "submitted", "fee": TRANSFER_FEE}
    if idempotency_key:
        transfers_by_key[idempotency_key] = reference
    return transfers[reference]


@app.get("/transfers/{reference}")
def get_transfer(reference: str):
    transfer = transfers.get(reference)
    if transfer is None:
        raise HTTPException(status_code=404, detail="transfer not found")
    transfer["status"] = "confirmed"
    return transfer


@app.get("/balances/{address}")
def get_balance(address: str):
    return {"address": address, "balance": balances.get(address, 0.0)}
