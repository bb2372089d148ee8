"""
AMLChain declaration service.

Serve with the app factory so settings are read at startup, not at import:

    uvicorn --factory amlchain_api.main:create_app
"""

import json
import logging
import math
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from amlchain.authorization import AuthorizationPolicy, AuthorizationService
from amlchain.codec import TypedDataDomain, get_codec
from amlchain.errors import (
    AlreadyFinalized,
    DeclarationError,
    DuplicateNonce,
    Expired,
    NotFound,
    ValidationError,
)
from amlchain.models import DeclarationKey, DeclarationStatus, utc_now
from amlchain.nonce import get_nonce_generator
from amlchain.reconciliation import LedgerObserver, ReconciliationService
from amlchain.validation import validate_address, validate_declaration_id

from .config import Settings, is_debug, is_production, load_settings, validate_config
from .db import SqliteDeclarationStore
from .event_log import (
    EVENT_CREATED,
    EVENT_TX_ATTACHED,
    DeclarationEventLog,
    get_event_log,
    record_finalize,
)
from .logging_config import audit_log, configure_logging, get_request_id, set_request_id
from .models import AttachTransactionRequest, CreateDeclarationRequest, MarkExecutedRequest
from .observer import get_observer
from .rate_limit import RateLimiter
from .security import clean_request_id, extract_client_id, require_operator, sanitize_for_logging

logger = logging.getLogger(__name__)

_ERROR_STATUS = (
    (ValidationError, 400),
    (NotFound, 404),
    (DuplicateNonce, 409),
    (AlreadyFinalized, 409),
    (Expired, 410),
)


@dataclass
class Services:
    settings: Settings
    store: SqliteDeclarationStore
    auth: AuthorizationService
    recon: ReconciliationService
    events: DeclarationEventLog
    observer: Optional[LedgerObserver]
    clock: Callable[[], datetime]
    sign_params_limiter: RateLimiter
    submit_limiter: RateLimiter
    reconcile_limiter: RateLimiter


def build_services(
    settings: Settings,
    observer: Optional[LedgerObserver] = None,
    clock: Callable[[], datetime] = utc_now,
) -> Services:
    store = SqliteDeclarationStore(settings.db_path)
    domain = TypedDataDomain(
        name=settings.domain_name,
        version=settings.domain_version,
        chain_id=settings.chain_id,
        verifying_contract=settings.contract_address or None,
    )
    policy = AuthorizationPolicy(
        deadline_seconds=settings.deadline_seconds,
        vault_address=settings.vault,
        commit_destination=settings.commit_destination,
        token_decimals=settings.token_decimals,
    )
    auth = AuthorizationService(
        store,
        get_codec(settings.encoding, domain),
        get_nonce_generator(settings.nonce_strategy),
        policy,
        clock=clock,
    )
    return Services(
        settings=settings,
        store=store,
        auth=auth,
        recon=ReconciliationService(store, clock=clock),
        events=get_event_log(settings, store),
        observer=observer if observer is not None else get_observer(settings),
        clock=clock,
        sign_params_limiter=RateLimiter(settings.sign_params_rpm),
        submit_limiter=RateLimiter(settings.submit_rpm),
        reconcile_limiter=RateLimiter(settings.reconcile_rpm),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def _enforce_rate_limit(limiter: RateLimiter, request: Request, endpoint: str) -> None:
    client_id = extract_client_id(dict(request.headers), request.client.host if request.client else None)
    result = limiter.check(f"{client_id}:{endpoint}")
    if not result.allowed:
        audit_log.rate_limit_exceeded(client_id, endpoint)
        retry_after = str(int(math.ceil(result.retry_after or 0)))
        raise HTTPException(429, "RATE_LIMIT", headers={"Retry-After": retry_after})


def create_app(
    settings: Optional[Settings] = None,
    observer: Optional[LedgerObserver] = None,
    clock: Callable[[], datetime] = utc_now,
) -> FastAPI:
    settings = settings or load_settings()
    services = build_services(settings, observer, clock)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging("DEBUG" if is_debug() else settings.log_level, settings.log_json)
        services.store.init_schema()
        checks = validate_config(settings)
        failed = sorted(k for k, ok in checks.items() if not ok)
        if failed:
            log = logger.error if is_production(settings) else logger.warning
            log("configuration incomplete: %s", ", ".join(failed))
        logger.info("AMLChain declaration service started (encoding=%s, env=%s)", settings.encoding, settings.env)
        yield
        services.store.close()

    app = FastAPI(title="AMLChain Declaration Service", lifespan=lifespan)
    app.state.services = services

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        request_id = set_request_id(clean_request_id(request.headers.get("x-request-id")))
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    @app.exception_handler(DeclarationError)
    async def declaration_error_handler(request: Request, exc: DeclarationError):
        status = next((code for cls, code in _ERROR_STATUS if isinstance(exc, cls)), 503)
        if status == 503:
            logger.error("%s on %s: %r", exc.code, request.url.path, getattr(exc, "cause", None) or exc)
            return JSONResponse(
                status_code=503,
                content={
                    "error": "Service temporarily unavailable",
                    "code": exc.code,
                    "retryable": True,
                    "request_id": get_request_id(),
                },
            )
        content = {"error": exc.message, "code": exc.code}
        if isinstance(exc, ValidationError):
            content["field"] = exc.field
        if isinstance(exc, (AlreadyFinalized, Expired)):
            content["declaration"] = exc.declaration.to_dict(services.clock())
        return JSONResponse(status_code=status, content=content)

    # ============================================================
    # Health
    # ============================================================

    @app.get("/health")
    def health(services: Services = Depends(get_services)):
        checks = validate_config(services.settings)
        try:
            stats = services.store.get_stats()
        except DeclarationError:
            return JSONResponse(status_code=503, content={"status": "unavailable", "store": False, "config": checks})
        return {
            "status": "ok",
            "store": True,
            "encoding": services.settings.encoding,
            "config": checks,
            "stats": stats,
        }

    # ============================================================
    # Authorization
    # ============================================================

    @app.get("/sign-params")
    def sign_params(
        request: Request,
        wallet: Optional[str] = Query(None),
        amount: Optional[str] = Query(None),
        to: Optional[str] = Query(None),
        text_version: Optional[str] = Query(None),
        services: Services = Depends(get_services),
    ):
        _enforce_rate_limit(services.sign_params_limiter, request, "sign-params")
        params = services.auth.authorize(wallet, to, amount, text_version)
        audit_log.signing_params_issued(params.owner, params.nonce, params.deadline, services.settings.encoding)
        return params.to_dict()

    @app.post("/declarations", status_code=201)
    def create_declaration(
        req: CreateDeclarationRequest,
        request: Request,
        services: Services = Depends(get_services),
    ):
        _enforce_rate_limit(services.submit_limiter, request, "declarations")
        try:
            result = services.auth.submit(
                req.owner,
                req.destination,
                req.amount,
                req.nonce,
                req.deadline,
                req.signature,
                req.textVersion,
            )
        except (ValidationError, DuplicateNonce) as e:
            audit_log.declaration_rejected(e.code, e.message, owner=req.owner, nonce=req.nonce)
            logger.debug("rejected submission: %s", sanitize_for_logging(req.model_dump()))
            raise
        declaration = result.declaration
        services.events.record(EVENT_CREATED, declaration, services.clock(), amount=declaration.amount)
        audit_log.declaration_created(declaration.id, declaration.owner, declaration.nonce, declaration.amount)
        return result.to_dict()

    # ============================================================
    # Reads
    # ============================================================

    @app.get("/declarations/by-nonce/{nonce}")
    def get_declaration_by_nonce(nonce: str, services: Services = Depends(get_services)):
        declaration = services.store.get(DeclarationKey.by_nonce(nonce))
        return declaration.to_dict(services.clock())

    @app.get("/declarations/{declaration_id}")
    def get_declaration(declaration_id: str, services: Services = Depends(get_services)):
        validate_declaration_id(declaration_id)
        declaration = services.store.get(DeclarationKey.by_id(declaration_id))
        return declaration.to_dict(services.clock())

    @app.get("/wallets/{wallet}/declarations")
    def list_wallet_declarations(
        wallet: str,
        status: Optional[str] = Query(None),
        services: Services = Depends(get_services),
    ):
        owner = validate_address(wallet, "wallet")
        now = services.clock()
        if status is None:
            records = services.store.list_by_owner(owner)
        elif status == "expired":
            records = [
                d for d in services.store.list_by_owner(owner, DeclarationStatus.PENDING)
                if d.is_expired(now)
            ]
        else:
            try:
                wanted = DeclarationStatus(status)
            except ValueError:
                raise ValidationError("status", "must be one of pending, executed, failed, expired")
            records = services.store.list_by_owner(owner, wanted)
        return {
            "owner": owner,
            "count": len(records),
            "declarations": [d.to_dict(now) for d in records],
        }

    # ============================================================
    # Reconciliation
    # ============================================================

    @app.post("/declarations/{declaration_id}/transaction")
    def attach_transaction(
        declaration_id: str,
        req: AttachTransactionRequest,
        request: Request,
        services: Services = Depends(get_services),
    ):
        _enforce_rate_limit(services.reconcile_limiter, request, "transaction")
        key = DeclarationKey.by_id(validate_declaration_id(declaration_id))
        result = services.recon.attach_pending_tx(key, req.txHash)
        declaration = result.declaration
        if result.applied:
            services.events.record(EVENT_TX_ATTACHED, declaration, services.clock())
        audit_log.transaction_attached(declaration.id, req.txHash.lower(), result.applied)
        return result.to_dict(services.clock())

    @app.post("/declarations/{declaration_id}/reconcile")
    def reconcile_declaration(
        declaration_id: str,
        request: Request,
        services: Services = Depends(get_services),
    ):
        _enforce_rate_limit(services.reconcile_limiter, request, "reconcile")
        key = DeclarationKey.by_id(validate_declaration_id(declaration_id))
        if services.observer is None:
            raise HTTPException(503, "LEDGER_OBSERVER_NOT_CONFIGURED")
        result = services.recon.reconcile(key, services.observer)
        record_finalize(services.events, result, "observer", services.clock())
        return result.to_dict(services.clock())

    @app.post("/declarations/mark-executed")
    def mark_executed(
        req: MarkExecutedRequest,
        request: Request,
        authorization: Optional[str] = Header(None),
        services: Services = Depends(get_services),
    ):
        try:
            require_operator(authorization, services.settings.operator_api_token)
        except HTTPException as e:
            if e.status_code == 500:
                logger.error("OPERATOR_API_TOKEN is not configured")
            else:
                client_id = extract_client_id(dict(request.headers), request.client.host if request.client else None)
                audit_log.security_event("operator_auth_failed", severity="high", client_id=client_id)
            raise

        key = DeclarationKey.by_nonce(req.nonce)
        success = req.outcome == DeclarationStatus.EXECUTED.value
        result = services.recon.finalize(key, req.txHash, success, enforce_deadline=True)
        record_finalize(services.events, result, "operator", services.clock())

        if not result.applied:
            # the operator path never reports over a terminal record
            raise AlreadyFinalized(result.declaration)
        return {"success": True, **result.to_dict(services.clock())}

    # ============================================================
    # Event trail
    # ============================================================

    @app.get("/declarations/{declaration_id}/events")
    def declaration_events(declaration_id: str, services: Services = Depends(get_services)):
        key = DeclarationKey.by_id(validate_declaration_id(declaration_id))
        services.store.get(key)
        events = []
        for entry in services.store.list_events(declaration_id):
            entry["event"] = json.loads(entry.pop("event_json"))
            events.append(entry)
        return {"declaration_id": declaration_id, "events": events}

    @app.get("/audit/proof")
    def audit_proof(services: Services = Depends(get_services)):
        head = services.store.event_chain_head()
        return {"chain": "sha256", **head}

    @app.get("/audit/events")
    def audit_events(services: Services = Depends(get_services)):
        return {"entries": services.store.list_events()}

    return app
