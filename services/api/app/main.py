import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect

from . import config
from .relay import RelayHub

logger = logging.getLogger(__name__)

relay_hub = RelayHub()


@asynccontextmanager
async def lifespan(app: FastAPI):
    await relay_hub.start()
    try:
        yield
    finally:
        await relay_hub.stop()


app = FastAPI(title="PDF Share Relay", lifespan=lifespan)


def _remote_label(websocket: WebSocket) -> Optional[str]:
    client = websocket.client
    if not client:
        return None
    return f"{client.host}:{client.port}"


@app.get("/health")
async def health():
    stats = relay_hub.stats()
    return {
        "ok": True,
        "connections": stats["connections"]["total"],
        "sessions": stats["sessions"],
    }


@app.websocket("/")
async def relay_stream(websocket: WebSocket):
    await websocket.accept()
    conn = relay_hub.connect(websocket, remote=_remote_label(websocket))
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                logger.info("Connection %s closed (code %s)", conn.conn_id, message.get("code"))
                break
            await relay_hub.receive(conn, text=message.get("text"), data=message.get("bytes"))
    except WebSocketDisconnect:
        pass
    finally:
        await relay_hub.disconnect(conn)


def run() -> None:
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(app, host=config.HOST, port=config.PORT, ws_max_size=config.WS_MAX_SIZE)


if __name__ == "__main__":
    run()
