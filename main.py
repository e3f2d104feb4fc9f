import json
import logging
from typing import Optional

from fastapi import FastAPI, File, Request, UploadFile, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from errors import EmptyName, MalformedMessage, NoFileUploaded, register_exception_handlers
from logging_setup import setup_logging
from media import MediaStore
from schemas import ServerStatus, UploadResponse
from settings import UPLOADS_URL_PREFIX, Settings, get_settings
from sessions import BroadcastRouter, ConnectionManager, SessionRegistry

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    setup_logging(settings.log_level)

    app = FastAPI(title="Chat Relay")
    register_exception_handlers(app)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # One registry per process, handed to the router explicitly
    registry = SessionRegistry()
    manager = ConnectionManager()
    router = BroadcastRouter(
        registry,
        manager,
        time_format=settings.time_format,
        enforce_sender_name=settings.enforce_sender_name,
    )
    store = MediaStore(settings.upload_dir, settings.max_upload_bytes)

    app.state.settings = settings
    app.state.registry = registry
    app.state.manager = manager
    app.state.router = router
    app.state.media = store

    app.mount(UPLOADS_URL_PREFIX, StaticFiles(directory=str(store.directory)), name="uploads")

    # -------------------- HTTP Endpoints --------------------

    @app.get("/", response_model=ServerStatus)
    def read_root():
        return ServerStatus(message="Chat relay running", online=len(manager), users=registry.roster_snapshot())

    @app.get("/users")
    def list_users():
        return registry.roster_snapshot()

    @app.post("/upload", response_model=UploadResponse)
    def upload(request: Request, media: Optional[UploadFile] = File(None)):
        # Sync handler: FastAPI runs it in the threadpool, off the event loop
        if media is None:
            raise NoFileUploaded()
        ref = store.save(media.file, media.filename, media.content_type, size=media.size)
        client = request.client.host if request.client else None
        logger.info("Upload from %s stored at %s", client, ref.url)
        return UploadResponse.from_reference(ref)

    # -------------------- WebSocket Endpoint --------------------

    @app.websocket("/ws")
    async def ws_endpoint(websocket: WebSocket):
        connection = await manager.connect(websocket)
        client = websocket.client.host if websocket.client else None
        logger.info("Connection %s opened from %s", connection, client)
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect(message.get("code", 1000))
                raw = message.get("text")
                if raw is None:
                    await router.reject(connection, MalformedMessage("Frames must be JSON text"))
                    continue
                try:
                    await router.dispatch(connection, json.loads(raw))
                except json.JSONDecodeError:
                    await router.reject(connection, MalformedMessage("Frame is not valid JSON"))
                except EmptyName:
                    logger.debug("Ignored blank name from %s", connection)
                except MalformedMessage as exc:
                    await router.reject(connection, exc)
        except WebSocketDisconnect:
            pass
        except Exception:
            logger.exception("Connection %s failed", connection)
            try:
                await websocket.close(code=1011)
            except RuntimeError:
                # already closed by the transport
                pass
        finally:
            manager.disconnect(connection)
            await router.on_disconnect(connection)
            logger.info("Connection %s closed", connection)

    return app


# Built lazily: `uvicorn main:create_app --factory`
if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)
