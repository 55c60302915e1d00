"""
Scenecast Web API Server.

FastAPI backend shared by the admin console and the viewer display.
Provides the ``/ws`` live channel that carries scene and audio mix updates,
bootstrap reads for clients that have not connected yet, and the library
endpoints for campaigns and uploaded assets.
"""

import asyncio
import json
import logging
import uuid
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

import uvicorn
from fastapi import Body, FastAPI, File, Form, HTTPException, UploadFile, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse
from pydantic import BaseModel, Field

from .. import __version__
from ..const import (
    BROADCAST_QUEUE_SIZE,
    MAX_IMAGE_UPLOAD_MB,
    MAX_TRACK_UPLOAD_MB,
    UPLOAD_CHUNK_SIZE,
    VIDEO_UPLOAD_MIME_TYPES,
)
from ..core.catalog import Catalog
from ..core.stage import StageEvent, StageService
from ..library.store import (
    AssetKind,
    AssetNotFoundError,
    LibraryError,
    LibraryStore,
    StoredUpload,
)
from ..library.uploads import create_file_name, resolve_upload_path
from ..paths import DATA_DIR, UPLOADS_DIR

logger = logging.getLogger(__name__)


class CampaignCreateRequest(BaseModel):
    """Campaign creation request."""

    name: str = Field("", description="Campaign name")


# WebSocket connections for live updates
class ClientConnection:
    """One connected client: its socket, outbound queue and writer task."""

    def __init__(self, websocket: WebSocket, queue_size: int):
        self.websocket = websocket
        self.client_id = uuid.uuid4().hex[:8]
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self.writer_task: Optional[asyncio.Task] = None


class ConnectionManager:
    """
    Manages WebSocket connections for live updates.

    Each client gets a bounded queue drained by its own writer task, so
    ``broadcast()`` never waits on a socket. A client whose queue is full or
    whose send fails is disconnected without affecting the others.
    """

    def __init__(self, queue_size: int = BROADCAST_QUEUE_SIZE):
        self.queue_size = queue_size
        self.active_connections: Dict[WebSocket, ClientConnection] = {}

    async def connect(
        self, websocket: WebSocket, snapshot: Optional[Callable[[], Iterable[dict]]] = None
    ) -> ClientConnection:
        """
        Accept a client and queue the messages returned by ``snapshot`` ahead of any broadcast.

        The snapshot is taken after the handshake and the client is registered
        without yielding in between, so no broadcast can fall between the two.
        """
        await websocket.accept()
        initial_messages = list(snapshot()) if snapshot is not None else []

        # Room for the snapshot plus at least one broadcast
        client = ClientConnection(websocket, max(self.queue_size, len(initial_messages) + 1))
        for message in initial_messages:
            client.queue.put_nowait(message)

        self.active_connections[websocket] = client
        client.writer_task = asyncio.create_task(self._writer(client))
        logger.info(f"WebSocket client {client.client_id} connected: {len(self.active_connections)} total connections")
        return client

    def disconnect(self, websocket: WebSocket) -> None:
        client = self.active_connections.pop(websocket, None)
        if client is None:
            return

        if client.writer_task and client.writer_task is not asyncio.current_task():
            client.writer_task.cancel()
        logger.info(
            f"WebSocket client {client.client_id} disconnected: {len(self.active_connections)} total connections"
        )

    def broadcast(self, message: dict) -> int:
        """
        Queue a message for every connected client.

        Returns:
            Number of clients the message was queued for
        """
        delivered = 0
        for client in list(self.active_connections.values()):
            try:
                client.queue.put_nowait(message)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning(f"WebSocket client {client.client_id} is not keeping up, dropping it")
                self._drop(client)
        return delivered

    async def close_all(self) -> None:
        for client in list(self.active_connections.values()):
            self.disconnect(client.websocket)
            await self._close(client.websocket)

    def _drop(self, client: ClientConnection) -> None:
        self.disconnect(client.websocket)
        asyncio.get_running_loop().create_task(self._close(client.websocket, code=1013))

    async def _writer(self, client: ClientConnection) -> None:
        while True:
            message = await client.queue.get()
            try:
                await client.websocket.send_json(message)
            except Exception as e:
                logger.warning(f"Failed to send WebSocket message to client {client.client_id}: {e}")
                self.disconnect(client.websocket)
                await self._close(client.websocket, code=1011)
                return

    async def _close(self, websocket: WebSocket, code: int = 1000) -> None:
        try:
            await websocket.close(code=code)
        except Exception as e:
            logger.debug(f"WebSocket close failed (already closed?): {e}")


# Initialize FastAPI app
app = FastAPI(
    title="Scenecast",
    description="Live scene and ambient audio broadcaster for tabletop game masters",
    version=__version__,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Global state
stage: Optional[StageService] = None
library_store: Optional[LibraryStore] = None
manager = ConnectionManager()
main_loop: Optional[asyncio.AbstractEventLoop] = None
upload_limits_mb: Dict[str, float] = {
    "image": MAX_IMAGE_UPLOAD_MB,
    "track": MAX_TRACK_UPLOAD_MB,
}


def on_stage_event(event: StageEvent) -> None:
    """Push a stage event to every client; safe to call from any thread."""
    message = event.to_message()
    try:
        running_loop = asyncio.get_running_loop()
    except RuntimeError:
        running_loop = None

    if main_loop is None or running_loop is main_loop:
        manager.broadcast(message)
    else:
        main_loop.call_soon_threadsafe(manager.broadcast, message)


def on_library_changed(catalog: Catalog) -> None:
    """Swap the new catalog into the stage and announce it."""
    if stage is None:
        return
    stage.replace_catalog(catalog)
    stage.publish_library()


def initialize_services(
    data_dir: Path = DATA_DIR, uploads_dir: Path = UPLOADS_DIR, config: Optional[Dict] = None
) -> StageService:
    """Load the library and build the stage, wiring their callbacks to the live channel."""
    global stage, library_store, manager

    config = config or {}
    upload_limits_mb["image"] = config.get("max_image_upload_mb", MAX_IMAGE_UPLOAD_MB)
    upload_limits_mb["track"] = config.get("max_track_upload_mb", MAX_TRACK_UPLOAD_MB)
    manager = ConnectionManager(config.get("broadcast_queue_size", BROADCAST_QUEUE_SIZE))

    library_store = LibraryStore(data_dir, uploads_dir)
    catalog = library_store.load()

    stage = StageService(catalog)
    stage.on_event = on_stage_event
    library_store.on_library_changed = on_library_changed

    logger.info(
        f"Services initialized: {len(catalog.campaigns)} campaigns, {len(catalog.backgrounds)} backgrounds, "
        f"{len(catalog.characters)} characters, {len(catalog.tracks)} tracks"
    )
    return stage


def require_stage() -> StageService:
    if stage is None:
        raise HTTPException(status_code=503, detail="Server is not initialized")
    return stage


def require_library() -> LibraryStore:
    if library_store is None:
        raise HTTPException(status_code=503, detail="Server is not initialized")
    return library_store


def library_http_error(error: LibraryError) -> HTTPException:
    status_code = 404 if isinstance(error, AssetNotFoundError) else 400
    return HTTPException(status_code=status_code, detail=str(error))


@app.on_event("startup")
async def startup_event():
    """Capture the event loop and make sure services exist."""
    global main_loop

    main_loop = asyncio.get_running_loop()
    if stage is None:
        initialize_services()


@app.on_event("shutdown")
async def shutdown_event():
    """Close every live connection."""
    global main_loop

    await manager.close_all()
    main_loop = None
    logger.info("Closed all WebSocket connections")


@app.get("/api/health")
async def health_check():
    return {
        "status": "ok",
        "version": __version__,
        "clients": len(manager.active_connections),
    }


# Bootstrap reads
@app.get("/api/scene")
async def get_scene():
    return {"scene": require_stage().scene.to_dict()}


@app.post("/api/scene")
async def submit_scene(candidate: Any = Body(None)):  # noqa: B008
    """Submit a scene through the same path as the live channel, with an acknowledgment."""
    service = require_stage()
    accepted = service.submit_scene(candidate)
    return {"accepted": accepted is not None, "scene": service.scene.to_dict()}


@app.get("/api/audio")
async def get_audio_mix():
    return {"mix": require_stage().mix.to_dict()}


@app.post("/api/audio")
async def submit_audio_mix(candidate: Any = Body(None)):  # noqa: B008
    mix, changed = require_stage().submit_mix(candidate)
    return {"changed": changed, "mix": mix.to_dict()}


@app.get("/api/library")
async def get_library():
    return require_stage().library_payload()


@app.get("/api/layouts")
async def get_layouts():
    return {"layouts": require_stage().layouts.to_list()}


# Campaigns
@app.get("/api/campaigns")
async def list_campaigns():
    return {"campaigns": require_library().campaigns}


@app.post("/api/campaigns", status_code=201)
async def create_campaign(request: CampaignCreateRequest):
    store = require_library()
    try:
        return {"campaign": store.create_campaign(request.name)}
    except LibraryError as e:
        raise library_http_error(e) from e
    except Exception as e:
        logger.error(f"Failed to create campaign: {e}")
        raise HTTPException(status_code=500, detail=str(e)) from e


# Assets
@app.get("/api/assets/custom")
async def list_custom_assets():
    return require_library().custom_assets()


def validate_upload_type(kind: AssetKind, content_type: str) -> None:
    if kind == AssetKind.TRACKS:
        if not (content_type.startswith("audio/") or content_type in VIDEO_UPLOAD_MIME_TYPES):
            raise HTTPException(status_code=400, detail="Only audio files or MP4 videos are allowed.")
    elif not content_type.startswith("image/"):
        raise HTTPException(status_code=400, detail="Only image files are allowed.")


async def save_upload(upload: UploadFile, destination_dir: Path, max_size_mb: float) -> StoredUpload:
    """
    Stream an upload to disk under a generated name.

    The partial file is removed when the size limit is hit or writing fails.
    """
    file_name = create_file_name(upload.filename)
    destination = destination_dir / file_name
    max_bytes = int(max_size_mb * 1024 * 1024)
    written = 0

    try:
        with open(destination, "wb") as buffer:
            while True:
                chunk = await upload.read(UPLOAD_CHUNK_SIZE)
                if not chunk:
                    break
                written += len(chunk)
                if written > max_bytes:
                    raise HTTPException(status_code=400, detail=f"File exceeds the {max_size_mb:g} MB upload limit.")
                buffer.write(chunk)
    except Exception:
        destination.unlink(missing_ok=True)
        raise

    logger.info(f"Saved upload {upload.filename!r} to {destination} ({written} bytes)")
    return StoredUpload(file_name=file_name, original_name=upload.filename or "", mime_type=upload.content_type or "")


async def handle_asset_upload(
    kind: AssetKind, upload: Optional[UploadFile], name: Optional[str], campaign_id: Optional[str]
) -> Dict[str, Any]:
    store = require_library()
    asset_label = kind.value[:-1]

    try:
        if upload is None or not upload.filename:
            missing = "media file" if kind == AssetKind.TRACKS else "image"
            raise HTTPException(status_code=400, detail=f"No {missing} was uploaded.")

        content_type = upload.content_type or ""
        validate_upload_type(kind, content_type)
        store.require_campaign(campaign_id, asset_label)

        limit_mb = upload_limits_mb["track" if kind == AssetKind.TRACKS else "image"]
        destination_dir = store.uploads_dir / store.upload_subdir(kind, content_type)
        stored = await save_upload(upload, destination_dir, limit_mb)

        try:
            if kind == AssetKind.CHARACTERS:
                record = store.add_character(stored, name, campaign_id)
            elif kind == AssetKind.BACKGROUNDS:
                record = store.add_background(stored, name, campaign_id)
            else:
                record = store.add_track(stored, name, campaign_id)
        except LibraryError:
            (destination_dir / stored.file_name).unlink(missing_ok=True)
            raise

        return {asset_label: record}

    except HTTPException:
        raise
    except LibraryError as e:
        raise library_http_error(e) from e
    except Exception as e:
        logger.error(f"Upload of {asset_label} failed: {e}")
        raise HTTPException(status_code=500, detail=str(e)) from e


@app.post("/api/assets/characters", status_code=201)
async def upload_character(
    image: Optional[UploadFile] = File(None),  # noqa: B008
    name: Optional[str] = Form(None),
    campaign_id: Optional[str] = Form(None, alias="campaignId"),
):
    """Upload a character portrait."""
    return await handle_asset_upload(AssetKind.CHARACTERS, image, name, campaign_id)


@app.post("/api/assets/backgrounds", status_code=201)
async def upload_background(
    image: Optional[UploadFile] = File(None),  # noqa: B008
    name: Optional[str] = Form(None),
    campaign_id: Optional[str] = Form(None, alias="campaignId"),
):
    """Upload a background image."""
    return await handle_asset_upload(AssetKind.BACKGROUNDS, image, name, campaign_id)


@app.post("/api/assets/tracks", status_code=201)
async def upload_track(
    file: Optional[UploadFile] = File(None),  # noqa: B008
    name: Optional[str] = Form(None),
    campaign_id: Optional[str] = Form(None, alias="campaignId"),
):
    """Upload an audio track or a video."""
    return await handle_asset_upload(AssetKind.TRACKS, file, name, campaign_id)


@app.delete("/api/assets/{kind}/{asset_id}")
async def delete_asset(kind: AssetKind, asset_id: str):
    store = require_library()
    try:
        store.delete_asset(kind, asset_id)
        return {"success": True}
    except LibraryError as e:
        raise library_http_error(e) from e
    except Exception as e:
        logger.error(f"Failed to delete {kind.value} asset {asset_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e)) from e


@app.get("/uploads/{file_path:path}")
async def serve_upload(file_path: str):
    """Serve an uploaded file."""
    store = require_library()
    resolved = resolve_upload_path(f"/uploads/{file_path}", store.uploads_dir)
    if resolved is None or not resolved.is_file():
        raise HTTPException(status_code=404, detail="File not found")
    return FileResponse(resolved)


# WebSocket endpoint for live updates
@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """
    Live channel.

    The client first receives the current scene and audio mix, then every
    broadcast. Inbound frames are JSON objects routed to the stage.
    """
    service = require_stage()

    def snapshot() -> List[dict]:
        return [event.to_message() for event in service.snapshot_events()]

    await manager.connect(websocket, snapshot=snapshot)

    try:
        while True:
            try:
                text = await websocket.receive_text()
            except KeyError:
                # Binary frame: there is no "text" field in the ASGI message
                logger.debug("Ignoring binary WebSocket frame")
                continue
            try:
                message = json.loads(text)
            except (ValueError, RecursionError):
                logger.debug(f"Ignoring malformed WebSocket frame: {text[:200]!r}")
                continue
            service.handle_client_message(message)

    except WebSocketDisconnect:
        logger.debug("WebSocket client closed the connection")
    except RuntimeError as e:
        # Socket already closed by the server side
        logger.debug(f"WebSocket receive stopped: {e}")
    finally:
        manager.disconnect(websocket)


def run_server(
    host: str = "0.0.0.0",
    port: int = 3000,
    debug: bool = False,
    config: Optional[Dict] = None,
    data_dir: Optional[Path] = None,
    uploads_dir: Optional[Path] = None,
):
    """Run the API server."""
    initialize_services(data_dir or DATA_DIR, uploads_dir or UPLOADS_DIR, config)

    uvicorn.run(
        app,
        host=host,
        port=port,
        reload=False,
        log_level="debug" if debug else "info",
        access_log=False,
    )
