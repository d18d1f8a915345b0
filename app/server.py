from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from app.config import settings
from app.db.database import init_db
from app.errors import ProgressionError
from app.middleware.auth import AuthMiddleware

# CORS: use CORS_ORIGINS (comma-separated) or sensible dev defaults.
if settings.cors_origins:
    _allowed_origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
else:
    _allowed_origins = [
        "http://localhost:8000",
        "http://127.0.0.1:8000",
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ]


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    yield


app = FastAPI(title="Study Progression Engine", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
)
app.add_middleware(AuthMiddleware)


@app.exception_handler(ProgressionError)
async def progression_error_handler(request: Request, exc: ProgressionError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# Import and register routes
from app.routes.study_planner import router as study_planner_router
from app.routes.videos import router as videos_router

app.include_router(study_planner_router)
app.include_router(videos_router)


@app.get("/health")
async def health_check():
    return {"status": "ok"}
