import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from app.config import get_settings
from app.dependencies import get_media_pool
from app.errors import AppError, app_error_handler
from app.routers import auth, videos

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        yield
    finally:
        if get_media_pool.cache_info().currsize:
            # Drop queued probe/thumbnail jobs; running ffmpeg processes finish or hit their timeout
            get_media_pool().shutdown()
            get_media_pool.cache_clear()
            logger.info("Media worker pool shut down")


app = FastAPI(title="Video Hosting API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.frontend_url],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(AppError, app_error_handler)

app.include_router(auth.router)
app.include_router(videos.router)


@app.get("/")
def root():
    return {"message": "Video Hosting API", "docs": "/docs"}
