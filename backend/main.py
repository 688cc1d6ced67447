import logging
import os
from dataclasses import asdict
from fastapi import FastAPI, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session
from backend.db.config import get_db, init_db
from backend.blending.columns import ValidationError, get_blended_schema
from backend.blending.mappings import UnknownPlatformError, get_mapping, list_platforms
from backend.blending.service import (
    store_source_rows,
    run_blend,
    get_blended_data,
    get_blended_preview,
    list_custom_mappings,
    create_custom_mapping,
    update_custom_mapping,
    delete_custom_mapping,
)
from fastapi.middleware.cors import CORSMiddleware

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title="BlendIQ", version="0.1.0")

_DEFAULT_ORIGINS = "http://localhost:5173,http://127.0.0.1:5173"
app.add_middleware(
    CORSMiddleware,
    allow_origins=os.environ.get("CORS_ORIGINS", _DEFAULT_ORIGINS).split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class SourceRowsRequest(BaseModel):
    rows: list[dict]
    replace: bool = True


class BlendRequest(BaseModel):
    platform_ids: list[str]
    group_by: list[str] | None = None


class CustomMappingCreateRequest(BaseModel):
    platform_id: str
    field_type: str  # "dimension" | "metric"
    canonical_id: str
    platform_field_name: str
    transform: str | None = None


class CustomMappingUpdateRequest(BaseModel):
    platform_field_name: str | None = None
    transform: str | None = None


def _mapping_to_dict(m) -> dict:
    return {
        "id": m.id,
        "client_id": m.client_id,
        "platform_id": m.platform_id,
        "field_type": m.field_type,
        "canonical_id": m.canonical_id,
        "platform_field_name": m.platform_field_name,
        "transform": m.transform,
        "created_at": m.created_at.isoformat(),
    }


@app.on_event("startup")
def on_startup():
    init_db()


# --- Reference data ---

@app.get("/api/platforms")
def get_platforms():
    """List platforms with a field mapping."""
    return {"platforms": list_platforms()}


@app.get("/api/platforms/{platform_id}/mapping")
def get_platform_mapping(platform_id: str):
    """Return the default field mapping for a platform."""
    try:
        mapping = get_mapping(platform_id)
    except UnknownPlatformError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return {
        "platform_id": platform_id,
        "fields": [
            {**asdict(entry), "transform": entry.transform.value} for entry in mapping
        ],
    }


@app.get("/api/blended-schema")
def blended_schema():
    """Get the blended data column schema."""
    return get_blended_schema()


# --- Client data ---

@app.post("/api/clients/{client_id}/data/blend")
def blend_client_data(client_id: str, req: BlendRequest, db: Session = Depends(get_db)):
    """Blend a client's stored platform data, optionally aggregating by group_by."""
    try:
        result = run_blend(db, client_id, req.platform_ids, req.group_by)
    except UnknownPlatformError as exc:
        raise HTTPException(
            status_code=400,
            detail=f"No field mapping for platform {exc.platform_id}",
        )
    except ValidationError as exc:
        raise HTTPException(
            status_code=422,
            detail={"message": exc.message, "errors": exc.details},
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    return {"success": True, **result.to_dict()}


@app.post("/api/clients/{client_id}/sources/{platform_id}/rows")
def upload_source_rows(
    client_id: str, platform_id: str, req: SourceRowsRequest, db: Session = Depends(get_db),
):
    """Store already-parsed raw rows for one of the client's platforms."""
    try:
        stored = store_source_rows(db, client_id, platform_id, req.rows, replace=req.replace)
    except UnknownPlatformError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return {"client_id": client_id, "platform_id": platform_id, "rows_stored": stored}


@app.get("/api/clients/{client_id}/data/blended")
def get_blended(client_id: str, db: Session = Depends(get_db)):
    """Get the client's stored blended data."""
    rows = get_blended_data(db, client_id)
    return {"client_id": client_id, "row_count": len(rows), "data": rows}


@app.get("/api/clients/{client_id}/data/blended/preview")
def preview_blended(
    client_id: str, limit: int = 10, offset: int = 0, db: Session = Depends(get_db),
):
    """Paginated preview of the client's blended data."""
    if limit < 0 or offset < 0:
        raise HTTPException(status_code=400, detail="limit and offset must be >= 0.")
    return {**get_blended_preview(db, client_id, limit, offset), "data_type": "blended"}


# --- Custom mappings ---

@app.get("/api/clients/{client_id}/mappings")
def get_client_mappings(
    client_id: str, platform_id: str | None = None, db: Session = Depends(get_db),
):
    """List a client's custom field mappings."""
    return [_mapping_to_dict(m) for m in list_custom_mappings(db, client_id, platform_id)]


@app.post("/api/clients/{client_id}/mappings")
def add_client_mapping(
    client_id: str, req: CustomMappingCreateRequest, db: Session = Depends(get_db),
):
    """Override the native field a canonical field is read from."""
    try:
        mapping = create_custom_mapping(
            db,
            client_id,
            req.platform_id,
            req.field_type,
            req.canonical_id,
            req.platform_field_name,
            req.transform,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return _mapping_to_dict(mapping)


@app.put("/api/mappings/{mapping_id}")
def edit_mapping(mapping_id: int, req: CustomMappingUpdateRequest, db: Session = Depends(get_db)):
    try:
        mapping = update_custom_mapping(db, mapping_id, req.platform_field_name, req.transform)
    except ValueError as exc:
        status = 404 if "not found" in str(exc) else 400
        raise HTTPException(status_code=status, detail=str(exc))
    return _mapping_to_dict(mapping)


@app.delete("/api/mappings/{mapping_id}")
def remove_mapping(mapping_id: int, db: Session = Depends(get_db)):
    """Delete a custom mapping (reverts to the platform default)."""
    try:
        delete_custom_mapping(db, mapping_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return {"mapping_id": mapping_id, "deleted": True}
