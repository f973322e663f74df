import contextlib
import time

from aiohttp import web, WSMsgType

from .shared_config import load_relay_settings

WELCOME_TEXT = "Welcome to the arena relay"
SOCKETS_KEY = web.AppKey("sockets", set)
STATS_KEY = web.AppKey("stats", dict)


def log_relay(app, message, details=None):
    detail_text = f" details={details}" if details is not None else ""
    print(
        f"[relay] t={time.time():.3f} msg={message}"
        f" sockets={len(app[SOCKETS_KEY])} forwarded={app[STATS_KEY]['framesForwarded']}{detail_text}"
    )


async def forward_frame(app, sender, msg):
    dead = []
    for ws in list(app[SOCKETS_KEY]):
        if ws is sender or ws.closed:
            continue
        try:
            if msg.type == WSMsgType.BINARY:
                await ws.send_bytes(msg.data)
            else:
                await ws.send_str(msg.data)
            app[STATS_KEY]["framesForwarded"] += 1
        except Exception:
            dead.append(ws)
    for ws in dead:
        app[SOCKETS_KEY].discard(ws)
        log_relay(app, "socket_send_failed")


async def handle_welcome(request):
    return web.Response(status=200, text=WELCOME_TEXT, content_type="text/plain")


async def handle_status(request):
    app = request.app
    return web.json_response(
        {
            "clients": len(app[SOCKETS_KEY]),
            "framesForwarded": app[STATS_KEY]["framesForwarded"],
        }
    )


async def websocket_handler(request):
    app = request.app
    ws = web.WebSocketResponse()
    await ws.prepare(request)
    app[SOCKETS_KEY].add(ws)
    log_relay(app, "ws_connected", {"remote": request.remote})
    try:
        async for msg in ws:
            if msg.type in (WSMsgType.TEXT, WSMsgType.BINARY):
                await forward_frame(app, ws, msg)
            elif msg.type == WSMsgType.ERROR:
                break
    finally:
        app[SOCKETS_KEY].discard(ws)
        log_relay(app, "ws_disconnected", {"remote": request.remote})
    return ws


@web.middleware
async def cors_middleware(request, handler):
    if request.method == "OPTIONS":
        return web.Response(
            status=204,
            headers={
                "Access-Control-Allow-Origin": "*",
                "Access-Control-Allow-Methods": "GET, OPTIONS",
                "Access-Control-Allow-Headers": "Content-Type",
            },
        )
    response = await handler(request)
    response.headers["Access-Control-Allow-Origin"] = "*"
    response.headers["Access-Control-Allow-Methods"] = "GET, OPTIONS"
    response.headers["Access-Control-Allow-Headers"] = "Content-Type"
    return response


async def on_shutdown(app):
    for ws in list(app[SOCKETS_KEY]):
        with contextlib.suppress(Exception):
            await ws.close(code=1001, message=b"relay shutting down")
    app[SOCKETS_KEY].clear()


def create_app():
    app = web.Application(middlewares=[cors_middleware])
    app[SOCKETS_KEY] = set()
    app[STATS_KEY] = {"framesForwarded": 0}
    app.router.add_get("/", handle_welcome)
    app.router.add_get("/status", handle_status)
    app.router.add_get("/ws", websocket_handler)
    app.on_shutdown.append(on_shutdown)
    return app


def main():
    try:
        settings = load_relay_settings()
    except (FileNotFoundError, ValueError) as exc:
        raise SystemExit(str(exc)) from None
    host = settings["RELAY_HOST"]
    port = settings["RELAY_PORT"]
    app = create_app()
    print(f"Arena relay running at http://{host}:{port}/ (websocket at /ws)")
    web.run_app(app, host=host, port=port, print=None)


if __name__ == "__main__":
    main()
