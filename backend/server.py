from fastapi import FastAPI, APIRouter, Request
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from dotenv import load_dotenv
from starlette.middleware.cors import CORSMiddleware
import os
import logging
from pathlib import Path

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

from bootstrap import run_bootstrap
from errors import WorkflowError
from routers.admin import router as admin_router
from routers.attendance import router as attendance_router
from routers.auth import router as auth_router
from routers.events import router as events_router
from routers.feedback import router as feedback_router
from routers.forum import router as forum_router
from routers.live import router as live_router
from routers.organizers import router as organizers_router
from routers.password_resets import router as password_resets_router
from routers.registrations import router as registrations_router
from routers.teams import router as teams_router
from routers.tickets import router as tickets_router
from routers.users import router as users_router
from utils import UPLOAD_DIR

# Configure logging
logging.basicConfig(
    level=os.environ.get('LOG_LEVEL', 'INFO').upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
)
logger = logging.getLogger(__name__)

UPLOAD_DIR.mkdir(parents=True, exist_ok=True)

app = FastAPI(title="Felicity Event Management API", version="1.0.0")
api_router = APIRouter(prefix="/api")

# Mount static files for uploads
app.mount("/uploads", StaticFiles(directory=str(UPLOAD_DIR)), name="uploads")


@app.exception_handler(WorkflowError)
async def workflow_error_handler(request: Request, exc: WorkflowError):
    body = {"detail": exc.detail, "code": exc.code}
    body.update(exc.extra)
    return JSONResponse(status_code=exc.status_code, content=body, headers=exc.headers)


# ==================== STARTUP ====================
@app.on_event("startup")
async def startup_event():
    run_bootstrap()
    logger.info("Startup complete")


@api_router.get("/health")
async def health_check():
    return {"status": "healthy"}


api_router.include_router(auth_router)
api_router.include_router(users_router)
api_router.include_router(events_router)
api_router.include_router(organizers_router)
api_router.include_router(registrations_router)
api_router.include_router(tickets_router)
api_router.include_router(teams_router)
api_router.include_router(attendance_router)
api_router.include_router(forum_router)
api_router.include_router(feedback_router)
api_router.include_router(admin_router)
api_router.include_router(password_resets_router)

app.include_router(api_router)
app.include_router(live_router)

app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=os.environ.get('CORS_ORIGINS', '*').split(','),
    allow_methods=["*"],
    allow_headers=["*"],
)
