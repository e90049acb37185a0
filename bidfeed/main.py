from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

from fastapi import Body, Depends, FastAPI, HTTPException, Query, Request, WebSocket, status
from fastapi.responses import PlainTextResponse, StreamingResponse
from jsonschema import ValidationError

from .admin import config as admin_config
from .admin import health as admin_health
from .admin import stats as admin_stats
from .admin import subscribers as admin_subscribers
from .auction.fanout import BroadcastDispatcher
from .auction.models import Comment
from .auction.post_ids import extract_post_id, is_valid_post_id, owner_scoped_topic
from .auction.runner import AuctionRunner
from .config import ServerConfig, get_server_config
from .sources import CommentSourceError
from .sources.graph import GraphCommentSource
from .sources.poller import CommentPoller
from .sources.webhook import WebhookCommentSource
from .storage import AuctionStore, build_store
from .subscribers.fsm import ChannelKind
from .subscribers.registry import SubscriptionRegistry
from .transport.server import ChannelRejected, TransportServer, context_from_connection, origin_allow_list
from .transport.timestamps import utc_timestamp
from .validation.validator import SchemaRegistry, get_schema_registry

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    server_config = get_server_config()
    logging.getLogger("bidfeed").setLevel(server_config.log_level)
    schema_registry = get_schema_registry()
    store = build_store(server_config)
    subscription_registry = SubscriptionRegistry()
    dispatcher = BroadcastDispatcher(subscription_registry)
    auction_runner = AuctionRunner(store, dispatcher)
    transport_server = TransportServer(
        subscription_registry,
        authorize=origin_allow_list(server_config.broadcast.allowed_origins),
        keepalive_seconds=server_config.broadcast.keepalive_seconds,
        max_pending=server_config.broadcast.max_pending_frames,
        retry_ms=server_config.broadcast.retry_ms,
        on_open=auction_runner.prime,
    )
    webhook_source = WebhookCommentSource(
        verify_token=server_config.webhook.verify_token,
        schemas=schema_registry,
    )
    webhook_source.on_push(auction_runner.ingest)
    graph_source: GraphCommentSource | None = None
    poller: CommentPoller | None = None
    if server_config.graph.access_token:
        graph_source = GraphCommentSource(
            access_token=server_config.graph.access_token,
            base_url=server_config.graph.base_url,
            api_version=server_config.graph.api_version,
            page_size=server_config.graph.page_size,
            timeout_seconds=server_config.graph.timeout_seconds,
        )
        poller = CommentPoller(
            auction_runner,
            graph_source,
            interval_seconds=server_config.graph.poll_interval_seconds,
        )
        poller.start()
    else:
        logger.warning("FACEBOOK_ACCESS_TOKEN missing; Graph polling is disabled")

    app.state.server_config = server_config
    app.state.schema_registry = schema_registry
    app.state.store = store
    app.state.subscription_registry = subscription_registry
    app.state.dispatcher = dispatcher
    app.state.auction_runner = auction_runner
    app.state.transport_server = transport_server
    app.state.webhook_source = webhook_source
    app.state.graph_source = graph_source
    app.state.poller = poller
    app.state.start_time = datetime.now(timezone.utc)

    yield

    if poller is not None:
        await poller.stop()
    transport_server.close_all()
    if graph_source is not None:
        await graph_source.close()


app = FastAPI(
    title="Bid Feed Server",
    version="1.0.0",
    docs_url="/docs",
    lifespan=lifespan,
)

app.include_router(admin_health.router)
app.include_router(admin_stats.router)
app.include_router(admin_config.router)
app.include_router(admin_subscribers.router)


# Dependency helpers ---------------------------------------------------------


def get_server_settings(request: Request) -> ServerConfig:
    return request.app.state.server_config


def get_schema_service(request: Request) -> SchemaRegistry:
    return request.app.state.schema_registry


def get_store(request: Request) -> AuctionStore:
    return request.app.state.store


def get_auction_runner(request: Request) -> AuctionRunner:
    return request.app.state.auction_runner


def get_transport_server(request: Request) -> TransportServer:
    return request.app.state.transport_server


def get_webhook_source(request: Request) -> WebhookCommentSource:
    return request.app.state.webhook_source


def get_graph_source(request: Request) -> GraphCommentSource | None:
    return request.app.state.graph_source


def get_poller(request: Request) -> CommentPoller | None:
    return request.app.state.poller


# Routes ---------------------------------------------------------------------


@app.get("/", tags=["meta"])
async def root(settings: ServerConfig = Depends(get_server_settings)) -> dict[str, Any]:
    return {
        "service": "bidfeed",
        "version": app.version,
        "broadcast": {
            "keepalive_seconds": settings.broadcast.keepalive_seconds,
            "max_pending_frames": settings.broadcast.max_pending_frames,
            "transports": [kind.value for kind in ChannelKind],
        },
        "graph": {
            "configured": bool(settings.graph.access_token),
            "poll_interval_seconds": settings.graph.poll_interval_seconds,
        },
    }


@app.get("/health", tags=["meta"])
async def health() -> dict[str, str]:
    return {"status": "ok", "timestamp": utc_timestamp()}


@app.get("/webhook/facebook", tags=["webhook"], response_class=PlainTextResponse)
async def verify_webhook(
    request: Request,
    source: WebhookCommentSource = Depends(get_webhook_source),
) -> str:
    challenge = source.verify_subscription(dict(request.query_params))
    if challenge is None:
        logger.warning("webhook verification failed; check the verify token")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="verification failed")
    return challenge


@app.post("/webhook/facebook", tags=["webhook"])
async def receive_webhook(
    payload: Any = Body(...),
    source: WebhookCommentSource = Depends(get_webhook_source),
) -> dict[str, Any]:
    try:
        batches = source.deliver(payload)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc.message)) from exc
    return {"status": "received", "batches": batches}


@app.get("/auctions", tags=["auctions"])
async def list_auctions(store: AuctionStore = Depends(get_store)) -> list[dict[str, Any]]:
    return [{"topic": topic, **leader.as_payload()} for topic, leader in store.items()]


@app.get("/auctions/by-url", tags=["auctions"])
async def auction_by_url(
    url: str | None = Query(default=None),
    source: GraphCommentSource | None = Depends(get_graph_source),
    runner: AuctionRunner = Depends(get_auction_runner),
    store: AuctionStore = Depends(get_store),
) -> dict[str, Any]:
    if not url:
        raise HTTPException(status_code=400, detail="Missing url parameter")
    topic = extract_post_id(url)
    if not topic:
        raise HTTPException(status_code=400, detail="Invalid Facebook post URL")
    if source is None:
        raise HTTPException(status_code=503, detail="Facebook Graph access is not configured")
    warning = None
    if "_" not in topic:
        scoped = owner_scoped_topic(topic, store.topics())
        if scoped is not None:
            topic = scoped
        else:
            warning = (
                f"post {topic} has no owner prefix; page webhook updates arrive as "
                f"{{pageId}}_{topic} and will not reach this topic"
            )
            logger.info("by-url resolved bare post id %s", topic)
    try:
        comments = await source.poll(topic)
    except CommentSourceError as exc:
        logger.warning("by-url poll failed for topic=%s: %s", topic, exc)
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    leader = runner.ingest(topic, comments)
    body = {"topic": topic, **leader.as_payload()}
    if warning:
        body["warning"] = warning
    return body


@app.get("/auctions/{topic}", tags=["auctions"])
async def get_auction(topic: str, store: AuctionStore = Depends(get_store)) -> dict[str, Any]:
    leader = store.get(topic)
    if leader is None:
        raise HTTPException(status_code=404, detail="unknown auction")
    return {"topic": topic, **leader.as_payload()}


@app.post("/auctions/{topic}/comments", tags=["auctions"])
async def push_comments(
    topic: str,
    payload: dict[str, Any] = Body(...),
    schemas: SchemaRegistry = Depends(get_schema_service),
    runner: AuctionRunner = Depends(get_auction_runner),
) -> dict[str, Any]:
    try:
        schemas.validate("comment_batch", payload)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc.message)) from exc
    comments = [
        Comment(text=item["text"], author_name=item.get("author_name"), comment_id=item.get("id"))
        for item in payload["comments"]
    ]
    leader = runner.ingest(topic, comments)
    return {"topic": topic, **leader.as_payload()}


@app.post("/auctions/{topic}/track", tags=["auctions"], status_code=status.HTTP_201_CREATED)
async def track_auction(
    topic: str,
    payload: dict[str, Any] | None = Body(default=None),
    schemas: SchemaRegistry = Depends(get_schema_service),
    store: AuctionStore = Depends(get_store),
    poller: CommentPoller | None = Depends(get_poller),
) -> dict[str, Any]:
    payload = payload or {}
    try:
        schemas.validate("track_request", payload)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc.message)) from exc
    if not is_valid_post_id(topic):
        raise HTTPException(status_code=400, detail="Invalid Facebook post ID format")
    if poller is None:
        raise HTTPException(status_code=503, detail="Facebook Graph access is not configured")
    if "starting_price" in payload and store.get(topic) is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="auction already started; starting_price can only be set on a new topic",
        )
    leader = store.ensure(topic, payload.get("starting_price"))
    poller.track(topic)
    return {"topic": topic, "tracked": True, **leader.as_payload()}


@app.delete("/auctions/{topic}/track", tags=["auctions"])
async def untrack_auction(
    topic: str,
    poller: CommentPoller | None = Depends(get_poller),
) -> dict[str, Any]:
    if poller is not None:
        poller.untrack(topic)
    return {"topic": topic, "tracked": False}


@app.websocket("/ws")
async def duplex_channel(websocket: WebSocket) -> None:
    server: TransportServer = websocket.app.state.transport_server
    context = context_from_connection(ChannelKind.DUPLEX_SOCKET, websocket)
    await server.serve_socket(websocket, context)


@app.get("/stream", tags=["subscribers"])
async def push_channel(
    request: Request,
    server: TransportServer = Depends(get_transport_server),
) -> StreamingResponse:
    context = context_from_connection(ChannelKind.PUSH_STREAM, request)
    try:
        frames = await server.open_stream(context)
    except ChannelRejected as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    return StreamingResponse(
        frames,
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


def run() -> None:
    """Serve the app on the configured listen address."""
    import uvicorn

    settings = get_server_config()
    uvicorn.run(
        "bidfeed.main:app",
        host=settings.listen.get("host", "0.0.0.0"),
        port=int(settings.listen.get("port", 4000)),
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
