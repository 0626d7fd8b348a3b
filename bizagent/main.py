"""Main FastAPI application entry point."""
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from bizagent.api.routes import router
from bizagent.config import settings
from bizagent.database import Base, engine
# Import models to register them with SQLAlchemy Base
from bizagent.models import audit, business, domain  # noqa: F401

logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# Create database tables
Base.metadata.create_all(bind=engine)

app = FastAPI(
    title="Biz-Agent - Approval-gated Business Assistant",
    description="Customer messages from WhatsApp, Telegram and the web, classified and executed behind human approval.",
    version="0.1.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router, prefix="/api", tags=["bizagent"])


@app.get("/health")
def health_check():
    return {
        "status": "healthy",
        "service": "bizagent",
        "classifier": "llm" if settings.openai_api_key else "keyword",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
