"""Configuration helpers for the bid feed server."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Mapping

import yaml

_DEFAULT_SERVER_CONFIG = Path(__file__).resolve().parent / "server.yaml"


@dataclass(frozen=True)
class AuctionConfig:
    starting_price: float
    store: str


@dataclass(frozen=True)
class BroadcastConfig:
    keepalive_seconds: float
    max_pending_frames: int
    retry_ms: int
    allowed_origins: tuple[str, ...]


@dataclass(frozen=True)
class GraphConfig:
    access_token: str | None
    base_url: str
    api_version: str
    page_size: int
    timeout_seconds: float
    poll_interval_seconds: float


@dataclass(frozen=True)
class WebhookConfig:
    verify_token: str | None


@dataclass(frozen=True)
class ClientConfig:
    primary_transport: str
    backoff_base_seconds: float
    backoff_max_seconds: float
    max_retries: int
    stable_seconds: float


@dataclass(frozen=True)
class ServerConfig:
    listen: Mapping[str, Any]
    log_level: str
    auction: AuctionConfig
    broadcast: BroadcastConfig
    graph: GraphConfig
    webhook: WebhookConfig
    client: ClientConfig


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(path)
    return yaml.safe_load(path.read_text()) or {}


def parse_server_config(data: Mapping[str, Any], env: Mapping[str, str] | None = None) -> ServerConfig:
    env = os.environ if env is None else env
    auction = data.get("auction", {})
    broadcast = data.get("broadcast", {})
    graph = data.get("graph", {})
    webhook = data.get("webhook", {})
    client = data.get("client", {})
    logging_section = data.get("logging", {})
    return ServerConfig(
        listen=data.get("listen", {}),
        log_level=str(env.get("BIDFEED_LOG_LEVEL") or logging_section.get("level", "INFO")).upper(),
        auction=AuctionConfig(
            starting_price=float(auction.get("starting_price", 0)),
            store=str(auction.get("store", "in_memory")),
        ),
        broadcast=BroadcastConfig(
            keepalive_seconds=float(broadcast.get("keepalive_seconds", 25)),
            max_pending_frames=int(broadcast.get("max_pending_frames", 32)),
            retry_ms=int(broadcast.get("retry_ms", 3000)),
            allowed_origins=tuple(broadcast.get("allowed_origins") or ()),
        ),
        graph=GraphConfig(
            access_token=env.get("FACEBOOK_ACCESS_TOKEN") or graph.get("access_token") or None,
            base_url=str(graph.get("base_url", "https://graph.facebook.com")),
            api_version=str(graph.get("api_version", "v19.0")),
            page_size=int(graph.get("page_size", 100)),
            timeout_seconds=float(graph.get("timeout_seconds", 10)),
            poll_interval_seconds=float(graph.get("poll_interval_seconds", 15)),
        ),
        webhook=WebhookConfig(
            verify_token=env.get("FACEBOOK_WEBHOOK_VERIFY_TOKEN") or webhook.get("verify_token") or None,
        ),
        client=ClientConfig(
            primary_transport=str(client.get("primary_transport", "duplex-socket")),
            backoff_base_seconds=float(client.get("backoff_base_seconds", 1)),
            backoff_max_seconds=float(client.get("backoff_max_seconds", 30)),
            max_retries=int(client.get("max_retries", 5)),
            stable_seconds=float(client.get("stable_seconds", 10)),
        ),
    )


@lru_cache(maxsize=1)
def get_server_config() -> ServerConfig:
    path = Path(os.getenv("BIDFEED_CONFIG_PATH", _DEFAULT_SERVER_CONFIG))
    return parse_server_config(_load_yaml(path))
