"""FastAPI application exposing the overlay registry over HTTP."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr, ValidationError

from .allocator import AddressAllocator, AddressSpaceExhausted
from .config import ControllerConfig
from .protocol import JoinProtocol, QueryProtocol
from .registry import PeerRecord, PeerRegistry
from .utils.serialization import pretty_json

logger = logging.getLogger(__name__)


class PrettyJSONResponse(JSONResponse):
    """JSON response indented with two spaces."""

    def render(self, content: Any) -> bytes:
        return pretty_json(content)


class JoinRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    node_id: StrictStr
    pubkey_b64: StrictStr
    udp_port: StrictInt = Field(ge=0, le=65535, description="UDP port the node listens on")


class PeerModel(BaseModel):
    node_id: str
    pubkey_b64: str
    endpoint: str = Field(description="Observed host joined with the declared UDP port")
    virtual_ip: str


def _caller_host(request: Request) -> str:
    return request.client.host if request.client else ""


def _caller_address(request: Request) -> str:
    if request.client is None:
        return "unknown"
    return f"{request.client.host}:{request.client.port}"


def _to_models(records: List[PeerRecord]) -> List[PeerModel]:
    return [PeerModel(**record.as_dict()) for record in records]


async def read_raw_body(request: Request) -> bytes:
    return await request.body()


def parse_join_body(body: bytes) -> JoinRequest:
    """Decode a join body regardless of the declared content type."""

    return JoinRequest.model_validate_json(body.decode("utf-8"))


def get_join_protocol(request: Request) -> JoinProtocol:
    return request.app.state.join_protocol


def get_query_protocol(request: Request) -> QueryProtocol:
    return request.app.state.query_protocol


def create_app(
    registry: Optional[PeerRegistry] = None,
    config: Optional[ControllerConfig] = None,
) -> FastAPI:
    """Build the controller app around a single registry instance."""

    config = config or ControllerConfig()
    if registry is None:
        registry = PeerRegistry(AddressAllocator(config.network, config.first_host))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "[controller] Serving overlay %s (next address %s); use /join and /peers",
            registry.allocator.network,
            registry.allocator.peek(),
        )
        yield
        logger.info("[controller] Shutting down with %d registered peers", len(registry))

    app = FastAPI(title="Overlay controller", version="0.1.0", lifespan=lifespan)
    app.state.registry = registry
    app.state.join_protocol = JoinProtocol(registry)
    app.state.query_protocol = QueryProtocol(registry)

    join_schema = JoinRequest.model_json_schema()

    @app.post(
        "/join",
        response_model=List[PeerModel],
        response_class=PrettyJSONResponse,
        openapi_extra={
            "requestBody": {"content": {"application/json": {"schema": join_schema}}, "required": True}
        },
    )
    def join(
        request: Request,
        body: bytes = Depends(read_raw_body),
        protocol: JoinProtocol = Depends(get_join_protocol),
    ) -> List[PeerModel]:
        """Register (or refresh) a node and return the full roster."""

        try:
            payload = parse_join_body(body)
        except (UnicodeDecodeError, ValidationError) as exc:
            logger.error("[ERROR] Bad JSON from %s: %s", _caller_address(request), exc)
            raise HTTPException(status_code=400, detail="bad json") from exc

        try:
            roster = protocol.join(
                payload.node_id,
                payload.pubkey_b64,
                payload.udp_port,
                _caller_host(request),
            )
        except AddressSpaceExhausted as exc:
            logger.error(
                "[ERROR] Rejecting join of '%s' from %s: %s",
                payload.node_id,
                _caller_address(request),
                exc,
            )
            raise HTTPException(status_code=503, detail="address space exhausted") from exc
        return _to_models(roster)

    @app.get("/peers", response_model=List[PeerModel], response_class=PrettyJSONResponse)
    def peers(protocol: QueryProtocol = Depends(get_query_protocol)) -> List[PeerModel]:
        """Return every registered node."""

        return _to_models(protocol.peers())

    return app


__all__ = ["JoinRequest", "PeerModel", "PrettyJSONResponse", "create_app"]
