import logging
import os

from dotenv import load_dotenv
from fastapi import FastAPI

from fluency.api.deps import init_engines
from fluency.api.routes import router
from fluency.config import load_engine_config

load_dotenv(override=False)

app = FastAPI(title="fluency-engine", version="0.1.0")
app.include_router(router)
# Configure logging
logging.basicConfig(level=os.environ.get("FLUENCY_LOG_LEVEL", "INFO").upper())
logger = logging.getLogger(__name__)


@app.on_event("startup")
async def _startup() -> None:
    config = load_engine_config()
    init_engines(config=config)
    logger.info("fluency-engine started with %d fact sets", len(config.fact_sets))


@app.get("/info")
async def info() -> dict[str, str]:
    return {"name": "fluency-engine", "version": "0.1.0"}
