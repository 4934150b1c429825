"""
FastAPI main application entry point.
"""
import logging
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from app.config import settings
from app.errors import ChatError
from app.routers import chat, ai_config

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Notes AI API",
    description="FastAPI backend for the notes app's AI assistant with streaming chat replies",
    version="1.0.0"
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ChatError)
async def chat_error_handler(request: Request, exc: ChatError):
    """Report chat errors raised before a response started."""
    logger.warning(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code},
    )


# Include routers
app.include_router(ai_config.router, prefix="/api/v1", tags=["ai-config"])
app.include_router(chat.router, prefix="/api/v1", tags=["chat"])


@app.on_event("startup")
async def startup_event():
    """Log configuration on startup and initialize database."""
    logger.info("=" * 60)
    logger.info("Starting Notes AI API")
    logger.info("=" * 60)
    logger.info(f"AI endpoint: {settings.ai_api_url}")
    logger.info(f"API running on: http://{settings.api_host}:{settings.api_port}")

    # Initialize database tables
    from app.database import init_db
    init_db()
    logger.info("Database initialized successfully")
    logger.info("=" * 60)


@app.get("/")
async def root():
    """Health check endpoint."""
    return {
        "message": "Notes AI API is running",
        "status": "ok",
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app.main:app", host=settings.api_host, port=settings.api_port)
