# humanity_link/main.py
import logging
from datetime import datetime, timezone
from functools import lru_cache
from typing import Optional

from fastapi import FastAPI, Depends, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from humanity_link import schemas
from humanity_link.directory import IdentityDirectory
from humanity_link.domain import AttestationRequest
from humanity_link.errors import HumanityLinkError, InvalidInput, NotFound
from humanity_link.prover import ProofInvoker
from humanity_link.resolver import IdentityResolver
from humanity_link.store import ProfileStore, make_store
from humanity_link.utils import short_wallet

logger = logging.getLogger(__name__)

ADULT_AGE = 18

app = FastAPI(title="HumanityLink - Attestation & Confidential Profile Service")


@app.exception_handler(HumanityLinkError)
async def humanity_link_error_handler(request: Request, exc: HumanityLinkError):
    if exc.status_code >= 500:
        logger.error(f"[API] {request.method} {request.url.path} failed: {exc.__class__.__name__}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"success": False, "error": exc.message})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    fields = ", ".join(".".join(str(p) for p in e["loc"] if p != "body") for e in exc.errors())
    return JSONResponse(status_code=400, content={"success": False, "error": f"Invalid request: {fields}"})


# --- dependencies, overridable in tests

@lru_cache
def get_invoker() -> ProofInvoker:
    return ProofInvoker()


@lru_cache
def get_directory() -> IdentityDirectory:
    return IdentityDirectory()


@lru_cache
def get_resolver() -> IdentityResolver:
    return IdentityResolver(get_directory())


@lru_cache
def get_store() -> ProfileStore:
    from humanity_link.store import PROFILE_STORE_BACKEND
    directory = get_directory() if PROFILE_STORE_BACKEND == "directory" else None
    return make_store(PROFILE_STORE_BACKEND, directory=directory)


def require_wallet(wallet: Optional[str]) -> str:
    if not wallet:
        raise InvalidInput("Wallet address parameter is required")
    return wallet


# --- Attestation: age >= 18 without revealing the birth year
@app.post("/attest", response_model=schemas.AttestOut)
def attest(payload: schemas.AttestIn, invoker: ProofInvoker = Depends(get_invoker)):
    current_year = datetime.now(timezone.utc).year
    result = invoker.invoke(AttestationRequest(payload.birthYear, current_year, ADULT_AGE))
    return {
        "success": True,
        "verdict": result.verdict,
        "currentYear": current_year,
        "message": f"Age >= {ADULT_AGE} verified" if result.verdict else f"Age < {ADULT_AGE}",
    }


# --- Confidential profile CRUD
@app.post("/profile", response_model=schemas.ProfileOut, status_code=201)
def create_profile(payload: schemas.ProfileIn,
                   resolver: IdentityResolver = Depends(get_resolver),
                   store: ProfileStore = Depends(get_store)):
    identity = resolver.resolve(payload.walletAddress, payload.subjectHint)
    profile = store.create_or_update(identity.identity_id, payload.piiData.to_fields(),
                                     wallet_address=identity.wallet_address)
    logger.info(f"[API] Stored profile v{profile.version} for wallet {short_wallet(identity.wallet_address)}")
    return {"success": True, "message": "Data stored successfully", "data": profile.to_dict()}


@app.get("/profile", response_model=schemas.ProfileOut)
def read_profile(wallet: Optional[str] = Query(None),
                 resolver: IdentityResolver = Depends(get_resolver),
                 store: ProfileStore = Depends(get_store)):
    identity = resolver.lookup(require_wallet(wallet))
    if identity is None:
        raise NotFound("No data found for this wallet address")
    return {"success": True, "data": store.read(identity.identity_id).to_dict()}


@app.put("/profile", response_model=schemas.ProfileOut)
def update_profile(payload: schemas.ProfileIn,
                   resolver: IdentityResolver = Depends(get_resolver),
                   store: ProfileStore = Depends(get_store)):
    identity = resolver.lookup(payload.walletAddress)
    if identity is None:
        raise NotFound("No existing data found to update")
    profile = store.update(identity.identity_id, payload.piiData.to_fields())
    return {"success": True, "message": "Data updated successfully", "data": profile.to_dict()}


@app.delete("/profile")
def delete_profile(wallet: Optional[str] = Query(None),
                   resolver: IdentityResolver = Depends(get_resolver),
                   store: ProfileStore = Depends(get_store)):
    identity = resolver.lookup(require_wallet(wallet))
    if identity is None:
        raise NotFound("No data found for this wallet address")
    store.delete(identity.identity_id)
    return JSONResponse({"success": True, "message": "Data deleted successfully"})
