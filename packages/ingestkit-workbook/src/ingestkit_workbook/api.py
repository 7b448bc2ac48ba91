"""FastAPI proxy that serves manifests and chunks to the render layer.

``GET /chunks?key=<manifestOrChunkKey>`` returns the stored JSON bytes
untouched.  Chunks and manifests are immutable once written, so responses
carry a long-lived public ``Cache-Control`` header.  Requires the optional
``fastapi`` dependency.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, FastAPI, HTTPException, Query, Response, status

from ingestkit_workbook.chunk_reader import ChunkReader
from ingestkit_workbook.config import WorkbookProcessorConfig
from ingestkit_workbook.errors import (
    InvalidObjectKeyError,
    ObjectNotFoundError,
    TransientStoreError,
)
from ingestkit_workbook.protocols import ObjectStore
from ingestkit_workbook.security import validate_object_key

logger = logging.getLogger("ingestkit_workbook")

JSON_MEDIA_TYPE = "application/json"


def create_chunk_router(
    store: ObjectStore,
    config: WorkbookProcessorConfig | None = None,
) -> APIRouter:
    """Build the router exposing ``GET /chunks``.

    Args:
        store: Object store holding ingestion output.
        config: Cache policy, allowed key prefixes, and read retry settings.

    Returns:
        An ``APIRouter`` ready to be included in any FastAPI application.
    """
    config = config or WorkbookProcessorConfig()
    reader = ChunkReader(store, config)
    router = APIRouter(tags=["Chunks"])

    @router.get("/chunks")
    def get_chunk(key: str | None = Query(default=None)) -> Response:
        """Return the raw JSON of a manifest or chunk.

        Raises:
            HTTPException: 400 if the key is missing or invalid
            HTTPException: 404 if no object exists at the key
            HTTPException: 503 if the store keeps failing transiently
            HTTPException: 500 on any other store failure
        """
        if not key:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Missing key parameter",
            )
        try:
            normalized = validate_object_key(key, config.allowed_key_prefixes)
        except InvalidObjectKeyError as exc:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=exc.message,
            ) from None
        if not normalized.endswith(".json"):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Only manifest and chunk objects can be fetched",
            )

        try:
            body = reader.read_raw(normalized)
        except ObjectNotFoundError:
            logger.info("Chunk not found: %s", normalized)
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Chunk not found",
            ) from None
        except TransientStoreError as exc:
            logger.warning("Store unavailable for %s: %s", normalized, exc.message)
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Object store unavailable",
            ) from None
        except Exception:
            logger.exception("Failed to fetch %s", normalized)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Failed to fetch chunk",
            ) from None

        return Response(
            content=body,
            media_type=JSON_MEDIA_TYPE,
            headers={"Cache-Control": config.chunk_cache_control},
        )

    return router


def create_app(
    store: ObjectStore,
    config: WorkbookProcessorConfig | None = None,
) -> FastAPI:
    """Create a standalone FastAPI application serving chunks."""
    app = FastAPI(title="ingestkit-workbook chunk proxy")
    app.include_router(create_chunk_router(store, config))

    @app.get("/health", tags=["Health"])
    def health_check() -> dict[str, str]:
        return {"status": "healthy"}

    return app
