from __future__ import annotations

import logging
import threading

from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from . import serializer
from .errors import SnapshotFormatError
from .storage import SnapshotStore, StorageStatus

logger = logging.getLogger(__name__)

BLOB_MEDIA_TYPE = "application/octet-stream"
MAX_UPLOAD_BYTES = 64 * 1024 * 1024


class PartSummary(BaseModel):
    """Shape of one captured part."""

    role: str
    vertex_count: int = Field(alias="vertexCount")
    triangle_count: int = Field(alias="triangleCount")
    submesh_count: int = Field(alias="submeshCount")
    blend_shapes: list[str] = Field(alias="blendShapes")
    material_count: int = Field(alias="materialCount")
    texture_count: int = Field(alias="textureCount")

    model_config = {"populate_by_name": True}


class CharacterSummary(BaseModel):
    """Decoded overview of a stored snapshot."""

    character_id: int = Field(alias="characterId")
    bone_count: int = Field(alias="boneCount")
    blob_size: int = Field(alias="blobSize")
    parts: list[PartSummary]

    model_config = {"populate_by_name": True}


def summarize(blob: bytes) -> CharacterSummary:
    snapshot = serializer.decode(blob)
    parts = []
    for role, part in snapshot.parts.items():
        parts.append(
            PartSummary(
                role=role.value,
                vertex_count=part.mesh.vertex_count,
                triangle_count=len(part.mesh.triangles) // 3,
                submesh_count=len(part.mesh.submeshes),
                blend_shapes=part.mesh.blend_shape_names,
                material_count=len(part.materials),
                texture_count=sum(m.captured_count for m in part.materials.materials),
            )
        )
    return CharacterSummary(
        character_id=snapshot.character_id,
        bone_count=len(snapshot.skeleton),
        blob_size=len(blob),
        parts=parts,
    )


_STATUS_CODES = {
    StorageStatus.NOT_FOUND: 404,
    StorageStatus.SKIPPED_EXISTS: 409,
    StorageStatus.PERMISSION_DENIED: 403,
    StorageStatus.IO_ERROR: 500,
}


def _raise_for(status: StorageStatus, character_id: int) -> None:
    if status.ok:
        return
    raise HTTPException(
        status_code=_STATUS_CODES.get(status, 500),
        detail=f"Character {character_id}: {status.value}",
    )


def create_app(store: SnapshotStore) -> FastAPI:
    """Create the FastAPI application serving stored snapshot blobs."""
    app = FastAPI(title="Character Data REST Bridge", version="1.0.0")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["GET", "PUT", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    @app.get("/")
    def health_check() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/v1/characters")
    def list_characters() -> dict[str, list[int]]:
        return {"characterIds": store.list_ids()}

    @app.get("/v1/characters/{character_id}")
    def get_character(character_id: int) -> Response:
        result = store.load(character_id)
        _raise_for(result.status, character_id)
        return Response(content=result.data, media_type=BLOB_MEDIA_TYPE)

    @app.get("/v1/characters/{character_id}/summary")
    def get_summary(character_id: int) -> CharacterSummary:
        result = store.load(character_id)
        _raise_for(result.status, character_id)
        try:
            return summarize(result.data)
        except SnapshotFormatError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc

    @app.put("/v1/characters/{character_id}", status_code=201)
    async def put_character(character_id: int, request: Request) -> dict[str, object]:
        blob = await request.body()
        if not blob:
            raise HTTPException(status_code=400, detail="Request body must not be empty")
        if len(blob) > MAX_UPLOAD_BYTES:
            raise HTTPException(status_code=413, detail="Character data too large")
        try:
            await run_in_threadpool(serializer.decode, blob)
        except SnapshotFormatError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc

        status = await run_in_threadpool(store.save, character_id, blob)
        _raise_for(status, character_id)
        return {"characterId": character_id, "status": status.value, "size": len(blob)}

    return app


def run_uvicorn_in_thread(
    app: FastAPI, host: str = "0.0.0.0", port: int = 8810
) -> tuple[threading.Thread, "uvicorn.Server"]:
    """Spawn a Uvicorn server for the given FastAPI app in a background thread."""
    import uvicorn

    config = uvicorn.Config(
        app=app, host=host, port=port, log_level="warning", lifespan="off"
    )
    server = uvicorn.Server(config=config)
    thread = threading.Thread(target=server.run, name="RestBridge", daemon=True)
    thread.start()
    logger.info(f"REST bridge listening on http://{host}:{port}")
    return thread, server
