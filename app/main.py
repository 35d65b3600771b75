from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from app.api import health, jobs, applications, companies
from app.config import get_settings
from app.errors import JobBoardError
from app.logger import get_logger
from app.scheduler import start_scheduler, shutdown_scheduler
from app.services.backend_client import close_clients

logger = get_logger("App")

@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: missing backend URL / key stops the process here
    settings = get_settings()
    logger.info(f"[LIFESPAN] Backend: {settings.backend_url}")
    start_scheduler(settings)

    yield  # App runs while we're in this context

    # Shutdown
    shutdown_scheduler()
    close_clients()
    logger.info("[LIFESPAN] Scheduler stopped, clients closed.")

app = FastAPI(title="Job Board Backend", lifespan=lifespan)


@app.exception_handler(JobBoardError)
async def job_board_error_handler(request: Request, exc: JobBoardError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# Include routes
app.include_router(health.router)
app.include_router(jobs.router)
app.include_router(applications.router)
app.include_router(companies.router)
