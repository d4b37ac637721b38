"""
HTTP surface for BunkerNote.

Relay submissions and Gateway creation are the only writes; everything else
is a read accessor over the ledger. Registry administration, nominations and
finalizations all arrive as signed intents.
"""

import logging
from typing import Optional

from eth_utils import decode_hex
from fastapi import FastAPI, HTTPException, Query, Response

from . import config
from .deployment import Deployment, deploy_system
from .errors import BunkerNoteError, FailureCode
from .gateway import DelegatedAccount, Intent
from .identity import normalize_identity
from .models import CreateGatewayRequest, HandleIntentsRequest
from .rate_limit import SubmissionQuota
from .relay import submit_intents

logger = logging.getLogger(__name__)

STATUS_BY_CODE = {
    FailureCode.ACCESS_DENIED: 403,
    FailureCode.SIGNATURE_INVALID: 403,
    FailureCode.INVALID_STATE: 409,
    FailureCode.REPLAY_REJECTED: 409,
    FailureCode.INSUFFICIENT_FUNDS: 402,
    FailureCode.UNKNOWN_PROGRAM: 404,
    FailureCode.UNKNOWN_SELECTOR: 422,
    FailureCode.MALFORMED_CALL: 422,
}


def _http_error(e: BunkerNoteError) -> HTTPException:
    return HTTPException(STATUS_BY_CODE.get(e.code, 400), e.to_dict())


def _identity(value: str) -> str:
    try:
        return normalize_identity(value)
    except ValueError:
        raise HTTPException(422, "INVALID_IDENTITY")


def _delivery_id(value: str) -> bytes:
    try:
        raw = decode_hex(value)
    except ValueError:
        raise HTTPException(422, "INVALID_DELIVERY_ID")
    if len(raw) != 32:
        raise HTTPException(422, "INVALID_DELIVERY_ID")
    return raw


def _bootstrap() -> Deployment:
    if not config.ADMIN_CONTROLLER:
        raise RuntimeError("BUNKERNOTE_ADMIN_CONTROLLER must be set to bootstrap the service")
    return deploy_system(admin_controller=config.ADMIN_CONTROLLER)


def create_app(deployment: Optional[Deployment] = None, submit_rpm: Optional[int] = None) -> FastAPI:
    deployment = deployment or _bootstrap()
    ledger = deployment.ledger
    registry = deployment.registry
    quota = SubmissionQuota(submit_rpm or config.SUBMIT_RPM)

    app = FastAPI(title="BunkerNote", debug=config.is_debug())
    app.state.deployment = deployment

    @app.get("/health")
    def health():
        return {
            "status": "ok",
            "env": config.ENV,
            "production": config.is_production(),
            "config": config.validate_config(),
        }

    @app.get("/deployment")
    def get_deployment():
        return deployment.to_dict()

    @app.post("/gateways")
    def create_gateway(req: CreateGatewayRequest):
        controller = _identity(req.controller)
        try:
            gateway = deployment.create_gateway(controller, req.salt)
        except BunkerNoteError as e:
            raise _http_error(e)
        return gateway.to_dict()

    @app.get("/gateways/{address}")
    def get_gateway(address: str):
        address = _identity(address)
        with ledger.read():
            if not ledger.is_program(address):
                raise HTTPException(404, "NOT_FOUND")
            program = ledger.get_program(address)
            if not isinstance(program, DelegatedAccount):
                raise HTTPException(404, "NOT_A_GATEWAY")
            return program.to_dict()

    @app.post("/intents")
    def handle_intents(req: HandleIntentsRequest, response: Response):
        beneficiary = _identity(req.beneficiary)
        try:
            intents = [Intent.from_dict(i.model_dump()) for i in req.intents]
        except ValueError:
            raise HTTPException(422, "MALFORMED_INTENT")

        decision = quota.consume(beneficiary, len(intents))
        if not decision.allowed:
            logger.warning("quota exhausted for %s (%d intents)", beneficiary, len(intents))
            raise HTTPException(429, "RATE_LIMIT", headers=decision.headers())
        response.headers.update(decision.headers())

        try:
            results = submit_intents(ledger, beneficiary, deployment.relay.address, intents, beneficiary)
        except BunkerNoteError as e:
            logger.warning("intent batch from %s rejected: %s", beneficiary, e)
            raise _http_error(e)
        return {"results": [r.to_dict() for r in results]}

    @app.get("/notes/{delivery_id}")
    def get_note(delivery_id: str):
        return registry.get_note(_delivery_id(delivery_id)).to_dict()

    @app.get("/notes/{delivery_id}/verification")
    def verify_note(delivery_id: str):
        try:
            return registry.verify_stored_note(_delivery_id(delivery_id)).to_dict()
        except BunkerNoteError as e:
            raise _http_error(e)

    @app.get("/ships/{imo}")
    def get_ship(imo: str):
        with ledger.read():
            account = registry.ship_account(imo)
            return {"imo": imo, "account": account, "controller": registry.current_controller(account)}

    @app.get("/suppliers/{supplier_id}")
    def get_supplier(supplier_id: int):
        with ledger.read():
            account = registry.supplier_account(supplier_id)
            return {"supplier_id": supplier_id, "account": account, "controller": registry.current_controller(account)}

    @app.get("/events")
    def get_events(since: int = Query(0, ge=0), name: Optional[str] = None):
        return [e.to_dict() for e in ledger.events(since=since, name=name)]

    return app
