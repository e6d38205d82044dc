import logging
import os

from fastapi import FastAPI

from kali.api.routes import router

app = FastAPI(title="kali-moderator", version="0.1.0")
app.include_router(router)
# Configure logging
logging.basicConfig(level=os.environ.get("KALI_LOG_LEVEL", "DEBUG").upper())
logger = logging.getLogger(__name__)


@app.get("/info")
async def info() -> dict[str, str]:
    return {"name": "kali-moderator", "version": "0.1.0"}
