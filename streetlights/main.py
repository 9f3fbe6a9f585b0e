# streetlights/main.py
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from streetlights.config import ALLOWED_ORIGINS, DATABASE_URL, ENV, RELOAD_INTERVAL_SEC, SCHEDULER_ENABLED
from streetlights.scheduler import reload_state, start_scheduler, stop_scheduler
from streetlights.services.cooldown import AnonymousCooldowns
from streetlights.services.state import EngineState


# -----------------------------------------------------------------------------
# Lifespan : état en mémoire + rechargement périodique
# -----------------------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    # --- Démarrage ---
    state = EngineState()
    app.state.engine = state
    app.state.cooldowns = AnonymousCooldowns()

    if DATABASE_URL:
        await reload_state(state)
        if SCHEDULER_ENABLED:
            app.state.scheduler = start_scheduler(state, RELOAD_INTERVAL_SEC)
        else:
            print("[scheduler] disabled via SCHEDULER_ENABLED=0")
    else:
        print("[startup] DATABASE_URL not set, starting with an empty map")

    yield

    # --- Arrêt ---
    stop_scheduler()


# -----------------------------------------------------------------------------
# App
# -----------------------------------------------------------------------------
app = FastAPI(title="Streetlights API", lifespan=lifespan)

# -----------------------------------------------------------------------------
# CORS (IMPORTANT: avant d'inclure les routers)
# -----------------------------------------------------------------------------
allowed_origins = {"http://localhost:3000", *ALLOWED_ORIGINS}

# Deploy Previews Netlify
NETLIFY_REGEX = r"^https://[a-z0-9-]+(\-\-[a-z0-9-]+)?\.netlify\.app$"

app.add_middleware(
    CORSMiddleware,
    allow_origins=sorted(allowed_origins),
    allow_origin_regex=NETLIFY_REGEX,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
    max_age=86400,
)


# -----------------------------------------------------------------------------
# Santé
# -----------------------------------------------------------------------------
@app.get("/health")
async def health(request: Request):
    state = getattr(request.app.state, "engine", None)
    return {"ok": True, "loaded_at": getattr(state, "loaded_at", None)}


if ENV == "dev":
    @app.get("/__routes")
    async def list_routes():
        return sorted([r.path for r in app.routes])


# -----------------------------------------------------------------------------
# no-store pour /map (éviter cache navigateur/CDN)
# -----------------------------------------------------------------------------
@app.middleware("http")
async def no_store_cache(request: Request, call_next):
    response: Response = await call_next(request)
    if request.url.path == "/map" or request.url.path.startswith("/lights/"):
        response.headers["Cache-Control"] = "no-store"
    return response


# -----------------------------------------------------------------------------
# Routes (IMPORTER APRÈS la config ci-dessus)
# -----------------------------------------------------------------------------
from streetlights.routes.map import router as map_router          # noqa: E402
from streetlights.routes.report import router as report_router    # noqa: E402
from streetlights.routes.feed import router as feed_router        # noqa: E402
from streetlights.routes.admin import router as admin_router      # noqa: E402

app.include_router(map_router)
app.include_router(report_router)
app.include_router(feed_router)
app.include_router(admin_router)
