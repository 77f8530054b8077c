"""FastAPI application entry point."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from consultant.api import router as api_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # Let interrupted/complete answers finish recording before exit
    from consultant.api.chat import get_chat_pipeline

    if get_chat_pipeline.cache_info().currsize:
        await get_chat_pipeline().coordinator.drain()


app = FastAPI(
    title="Life Consultant Engine",
    description="Retrieval-grounded, streamed chat over a user's tasks, journal and notes",
    version="0.1.0",
    lifespan=lifespan,
)


@app.get("/health")
async def health_check() -> JSONResponse:
    """Health check endpoint."""
    return JSONResponse(content={"status": "ok"}, status_code=200)


# Include v1 API router
app.include_router(api_router, prefix="/v1", tags=["v1"])
