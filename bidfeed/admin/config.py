"""Expose currently loaded server config for debugging."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from ..config import ServerConfig

router = APIRouter(prefix="/admin", tags=["admin"])


def _get_config(request: Request) -> ServerConfig:
    return request.app.state.server_config


@router.get("/config")
async def config(request: Request, config: ServerConfig = Depends(_get_config)) -> dict:
    # secrets are reported as present or absent, never echoed
    return {
        "version": request.app.version,
        "log_level": config.log_level,
        "starting_price": config.auction.starting_price,
        "storage_backend": config.auction.store,
        "keepalive_seconds": config.broadcast.keepalive_seconds,
        "max_pending_frames": config.broadcast.max_pending_frames,
        "retry_ms": config.broadcast.retry_ms,
        "allowed_origins": list(config.broadcast.allowed_origins),
        "graph_api_version": config.graph.api_version,
        "graph_configured": bool(config.graph.access_token),
        "poll_interval_seconds": config.graph.poll_interval_seconds,
        "webhook_configured": bool(config.webhook.verify_token),
        "client_primary_transport": config.client.primary_transport,
    }
