"""
AI provider configuration endpoints (one credential per user).
"""
import logging
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session
from app.database import get_db
from app.models.ai_config import AIConfig
from app.routers.chat import verify_token
from app.services import chat_service

logger = logging.getLogger(__name__)

router = APIRouter()


class AIConfigRequest(BaseModel):
    provider: Optional[str] = None
    api_key: str = ""
    model: str = ""


class AIConfigOut(BaseModel):
    """Stored configuration; the API key is only ever returned masked."""
    id: str
    provider: str
    model: str
    api_key_masked: str
    created_at: str
    updated_at: str


def mask_api_key(api_key: str) -> str:
    if len(api_key) <= 8:
        return "*" * len(api_key)
    return f"{api_key[:3]}{'*' * (len(api_key) - 7)}{api_key[-4:]}"


def _config_out(config: AIConfig) -> AIConfigOut:
    return AIConfigOut(
        id=config.id,
        provider=config.provider,
        model=config.model,
        api_key_masked=mask_api_key(config.api_key),
        created_at=config.created_at.isoformat() if config.created_at else "",
        updated_at=config.updated_at.isoformat() if config.updated_at else "",
    )


@router.get("/ai/config", response_model=Optional[AIConfigOut])
async def get_ai_config(
    token: dict = Depends(verify_token),
    db: Session = Depends(get_db),
):
    """Return the caller's AI configuration, or null when none is stored."""
    config = chat_service.get_credential(db, token["userId"])
    return _config_out(config) if config else None


@router.post("/ai/config", response_model=AIConfigOut)
@router.put("/ai/config", response_model=AIConfigOut)
async def save_ai_config(
    payload: AIConfigRequest,
    token: dict = Depends(verify_token),
    db: Session = Depends(get_db),
):
    """Create or replace the caller's AI configuration."""
    if not payload.api_key.strip() or not payload.model.strip():
        raise HTTPException(status_code=400, detail="api_key and model are required")

    config = chat_service.upsert_credential(
        db,
        token["userId"],
        api_key=payload.api_key.strip(),
        model=payload.model.strip(),
        provider=payload.provider,
    )
    logger.info(f"Saved AI config for user {token['userId']} (provider={config.provider}, model={config.model})")
    return _config_out(config)


@router.delete("/ai/config", response_model=dict)
async def delete_ai_config(
    token: dict = Depends(verify_token),
    db: Session = Depends(get_db),
):
    if not chat_service.delete_credential(db, token["userId"]):
        raise HTTPException(status_code=404, detail="AI config not found.")
    return {"status": "ok", "message": "AI config deleted"}
