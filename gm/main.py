import logging
import os

from fastapi import FastAPI

from gm.api.routes import router

VERSION = "0.1.0"

logging.basicConfig(
    level=os.environ.get("GM_LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="gm-orchestrator", version=VERSION)
app.include_router(router)


@app.get("/info")
async def info() -> dict[str, str]:
    return {"name": "gm-orchestrator", "version": VERSION}
