import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import uvicorn

from api.threads import router as threads_router
from config import LOG_LEVEL, DATABASE_URL, PROTOCOL_BACKEND
from threads import service as service_module
from threads.service import initialize_thread_service

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="Threadweave Backend",
    description="Semantic threading, summaries and protocol sync for room messages",
    version="1.0.0"
)

# Add CORS middleware for frontend connections
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, specify actual frontend URLs
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include threads API routes
app.include_router(threads_router)


# Startup event
@app.on_event("startup")
async def startup_event():
    """Open storage, load persisted threads and connect the protocol client"""
    try:
        service = await initialize_thread_service(DATABASE_URL)
        logger.info(f"Thread service ready ({len(service.get_threads(include_archived=True))} threads, protocol={PROTOCOL_BACKEND})")
    except Exception as e:
        # Endpoints answer 503 until the service exists
        logger.exception(f"Error initializing thread service: {e}")


@app.on_event("shutdown")
async def shutdown_event():
    """Flush pending writes and release connections"""
    service = service_module.thread_service
    if service is None:
        return

    try:
        await service.close()
        logger.info("Thread service stopped")
    except Exception as e:
        logger.warning(f"Error during shutdown: {e}")


# Health check endpoint
@app.get("/health")
async def health_check():
    """Health check endpoint"""
    service = service_module.thread_service
    return {
        "status": "healthy",
        "service": "threadweave-backend",
        "threads_ready": service is not None and service.is_initialized,
    }


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info"
    )
