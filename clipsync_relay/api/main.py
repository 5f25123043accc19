import argparse
import asyncio
import json
import logging
import sys
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import redis
import uvicorn
from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool

from clipsync_relay import __version__
from clipsync_relay.api.registry import FUNCTIONS, QUERY, call, lookup
from clipsync_relay.config import RedisConfig, RelayConfig
from clipsync_relay.errors import ClipSyncError, InvalidArguments, PayloadTooLarge, StorageUnavailable
from clipsync_relay.schema import LiveQueryRequest
from clipsync_relay.services.relay_service import RelayService

logger = logging.getLogger(__name__)


def _error_body(error: ClipSyncError) -> Dict[str, Any]:
    return {"ok": False, "error": error.code, "message": error.message}


def _error_response(error: ClipSyncError) -> JSONResponse:
    return JSONResponse(status_code=error.status_code, content=_error_body(error))


async def read_body(request: Request, limit: int) -> bytes:
    """Request body, refused with PayloadTooLarge once it exceeds ``limit`` bytes."""
    too_large = PayloadTooLarge(f"Request body exceeds {limit} bytes")

    declared = request.headers.get("content-length")
    if declared is not None and declared.isdigit() and int(declared) > limit:
        raise too_large

    body = bytearray()
    async for chunk in request.stream():
        body.extend(chunk)
        if len(body) > limit:
            raise too_large
    return bytes(body)


def create_app(relay: Optional[RelayService] = None) -> FastAPI:
    """
    Build the relay application.

    Without ``relay`` the application connects to Redis on startup using the
    environment configuration and disconnects on shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = app.state.relay is None
        if owned:
            app.state.relay = RelayService()
        try:
            yield
        finally:
            if owned:
                app.state.relay.close()
                app.state.relay = None

    app = FastAPI(title="ClipSync Relay", version=__version__, lifespan=lifespan)
    app.state.relay = relay

    @app.get("/")
    def root():
        return "running"

    @app.get("/health")
    def health(request: Request):
        try:
            return request.app.state.relay.health()
        except redis.RedisError as e:
            return _error_response(StorageUnavailable(str(e)))

    @app.get("/functions")
    def functions():
        return {name: function.kind for name, function in FUNCTIONS.items()}

    @app.post("/api/{name}")
    async def call_function(name: str, request: Request):
        relay = request.app.state.relay
        try:
            body = await read_body(request, relay.relay_config.max_request_bytes)
        except PayloadTooLarge as e:
            logger.info(f"{name} failed: {e.code}")
            return _error_response(e)

        try:
            payload = json.loads(body) if body else {}
        except ValueError:
            return _error_response(InvalidArguments("Request body must be JSON"))

        try:
            value = await run_in_threadpool(call, relay, name, payload)
        except ClipSyncError as e:
            logger.info(f"{name} failed: {e.code}")
            return _error_response(e)
        return {"ok": True, "value": value}

    @app.websocket("/live")
    async def live_query(websocket: WebSocket):
        """
        Live query channel.

        The client subscribes with ``{"name": ..., "args": ...}``. The query is
        re-evaluated every poll interval and its result pushed whenever it
        differs from the previous push. Sending another request replaces the
        subscription.
        """
        await websocket.accept()
        relay = websocket.app.state.relay
        interval = relay.relay_config.live_poll_interval
        subscription: Optional[LiveQueryRequest] = None
        last_sent: Optional[Dict[str, Any]] = None

        try:
            while True:
                if subscription is not None:
                    try:
                        value = await run_in_threadpool(call, relay, subscription.name, subscription.args)
                        message = {"ok": True, "value": value}
                    except ClipSyncError as e:
                        message = _error_body(e)
                    if message != last_sent:
                        await websocket.send_json(message)
                        last_sent = message

                try:
                    received = await asyncio.wait_for(
                        websocket.receive(),
                        timeout=interval if subscription is not None else None,
                    )
                except asyncio.TimeoutError:
                    continue
                if received["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect(received.get("code", 1000))

                try:
                    raw = received.get("text")
                    if raw is None:
                        raise ValueError("binary frame")
                    request = LiveQueryRequest.model_validate(json.loads(raw))
                    if lookup(request.name).kind != QUERY:
                        raise InvalidArguments(f"{request.name} is not a query")
                except (ValueError, ValidationError):
                    await websocket.send_json(_error_body(InvalidArguments("Expected {\"name\", \"args\"}")))
                    continue
                except ClipSyncError as e:
                    await websocket.send_json(_error_body(e))
                    continue

                logger.debug(f"Live query subscribed: {request.name}")
                subscription = request
                last_sent = None
        except WebSocketDisconnect:
            logger.debug("Live query client disconnected")

    return app


app = create_app()


def parse_args(argv=None):
    relay_config = RelayConfig.from_env()

    parser = argparse.ArgumentParser(
        description="ClipSync Relay - encrypted clipboard relay for paired devices"
    )

    parser.add_argument(
        "--host",
        type=str,
        default=relay_config.api_host,
        help=f"Interface to bind (default: {relay_config.api_host})"
    )

    parser.add_argument(
        "-p", "--port",
        type=int,
        default=relay_config.api_port,
        help=f"Port to listen on (default: {relay_config.api_port})"
    )

    parser.add_argument(
        "--redis-uri",
        type=str,
        default=None,
        help="redis:// or rediss:// URI, overrides REDIS_* variables"
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose debug logging"
    )

    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)

    logging.basicConfig(level=logging.INFO, format='%(levelname)s: %(message)s')
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        config = RedisConfig.from_uri(args.redis_uri) if args.redis_uri else RedisConfig.from_env()
        relay = RelayService(config=config)
    except (ValueError, StorageUnavailable) as e:
        logger.error(f"Cannot start relay: {e}")
        sys.exit(1)

    logger.info(f"ClipSync Relay listening on {args.host}:{args.port}")
    try:
        uvicorn.run(create_app(relay), host=args.host, port=args.port)
    finally:
        relay.close()


if __name__ == "__main__":
    main()
