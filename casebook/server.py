from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from casebook.config import settings
from casebook.db.database import close_db, init_db
from casebook.services.editors import EditorRegistry

# CORS: use CORS_ORIGINS (comma-separated) or local dev defaults.
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
    app.state.editors = EditorRegistry()
    yield
    # Clean stop: pending autosaves are written, not dropped
    await app.state.editors.close_all()
    await close_db()


app = FastAPI(title="Casebook", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type"],
)

# Import and register routes
from casebook.routes.children import router as children_router
from casebook.routes.cases import router as cases_router
from casebook.routes.sessions import router as sessions_router
from casebook.routes.assessment import router as assessment_router

app.include_router(children_router)
app.include_router(cases_router)
app.include_router(sessions_router)
app.include_router(assessment_router)


@app.get("/health")
async def health_check():
    return {"status": "ok"}
