import os
import time
import logging
from contextlib import asynccontextmanager

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI

load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

from . import metrics  # noqa: E402
from .pipeline.routes import batch_router, scene_router  # noqa: E402
from .pipeline.service import get_service  # noqa: E402


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("Bulk worker starting up...")
    metrics.set_gauge("start_time", time.time())
    service = get_service()
    await service.start_maintenance()
    yield
    logger.info("Bulk worker shutting down...")
    await service.stop_maintenance()


app = FastAPI(title="bulkgen", lifespan=lifespan)
app.include_router(batch_router)
app.include_router(scene_router)


@app.get("/health")
def health_check():
    """Verify worker is running and which capabilities are configured."""
    return {
        "status": "ok",
        "gemini_api_key_set": bool(os.environ.get("GEMINI_API_KEY") or os.environ.get("GOOGLE_API_KEY")),
        "kie_api_key_set": bool(os.environ.get("KIE_API_KEY")),
        "fal_key_set": bool(os.environ.get("FAL_KEY")),
        "supabase_url_set": bool(os.environ.get("SUPABASE_URL")),
        "redis_url_set": bool(os.environ.get("REDIS_URL")),
        "render_service_set": bool(os.environ.get("RENDER_SERVICE_URL")),
    }


@app.get("/metrics")
def metrics_endpoint():
    """Return a snapshot of all worker metrics."""
    return metrics.get_snapshot()


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 8080))
    uvicorn.run("bulkgen.main:app", host="0.0.0.0", port=port, reload=True)
