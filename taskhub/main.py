from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging
import os

from taskhub import __version__
from taskhub.database import init_db
from taskhub.errors import TaskhubError
from taskhub.messaging_service.routes import router as messaging_router
from taskhub.notifications_service.routes import router as notifications_router
from taskhub.proposal_service.routes import router as proposal_router

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Taskhub Core API",
    description="Messaging, notification and proposal resolution for the task marketplace",
    version=__version__
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(messaging_router)
app.include_router(notifications_router)
app.include_router(proposal_router)


@app.exception_handler(TaskhubError)
async def taskhub_error_handler(request: Request, exc: TaskhubError):
    if exc.status_code >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "code": exc.code}
    )


@app.on_event("startup")
async def startup_event():
    init_db()


@app.get("/health")
def health_check():
    return {"status": "healthy", "service": "taskhub-core"}
