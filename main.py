# FILE: main.py
"""
Study Set Service - FastAPI Application
Version: 0.3.0

Features:
- Cached study set lookup from the on-chain study-set registry
- Generate -> stage -> publish pipeline with per-unit generation locks
- Hash-verified fetches of canonical lyrics and published packs
- Optional debug generation route (STUDY_SET_ENABLE_DEBUG_ROUTES=true)

v0.3.0 Changes:
- Race resolution attempts are configurable (STUDY_SET_RACE_RESOLUTION_ATTEMPTS)
- Credit check runs before the generation lock is taken
"""
import logging
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv

# Load .env FIRST before any other imports that might need env vars
load_dotenv()

from study_pipeline import __version__
from study_pipeline.db import init_db
from study_pipeline.pipeline.dependencies import close_pipeline, get_settings
from study_pipeline.pipeline.router import router as study_sets_router

logging.basicConfig(
    level=os.getenv("STUDY_SET_LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(
    title="Study Set Service",
    version=__version__,
    description="Generates, stages and publishes lyric study sets exactly once per track/language/version",
)

# ====== CORS ======

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)


# ====== STARTUP ======

@app.on_event("startup")
def on_startup():
    os.makedirs("data", exist_ok=True)

    init_db()
    print("[startup] Generation lock store: [OK] ready")

    settings = get_settings()

    print("[startup] Checking environment variables...")
    generate_problems = settings.missing_for_generate()
    if generate_problems:
        for problem in generate_problems:
            print(f"[startup] {problem} - POST /study-sets/generate will answer 500")
    else:
        print("[startup] Generate pipeline: [OK] configured")

    if settings.genius_api_key:
        print("[startup] GENIUS_API_KEY: [OK] set (enables trivia questions)")
    else:
        print("[startup] GENIUS_API_KEY: [X] NOT SET - trivia generation disabled")

    if settings.enable_debug_routes:
        print("[startup] Debug routes: [OK] ENABLED")
        print("[startup]   - POST /study-sets/debug-generate")
    else:
        print("[startup] Debug routes: [X] DISABLED")
        print("[startup]   Set STUDY_SET_ENABLE_DEBUG_ROUTES=true to enable")


@app.on_event("shutdown")
async def on_shutdown():
    await close_pipeline()


# ====== ROUTERS ======

# Study sets router - public lookup, wallet-attributed generate
app.include_router(study_sets_router, prefix="/study-sets", tags=["Study Sets"])


# ====== PUBLIC ENDPOINTS ======

@app.get("/ping")
def ping():
    """Health check (public)."""
    return {"status": "ok", "version": __version__}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
