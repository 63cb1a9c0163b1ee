from __future__ import annotations

from datetime import UTC, datetime
import logging
import os

from dotenv import load_dotenv
from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest

from .routers.session_store import router as session_store_router
from .routers.completion import router as completion_router
from ..observability.metrics import metrics_middleware_factory

load_dotenv()  # Load environment variables from .env if present (GEMINI_API_KEY, MONGO_URL, etc.)

app = FastAPI(title="MedAssist Functions API", version="0.1.0")

logging.getLogger("medassist.api").setLevel(logging.INFO)

# Observability: request latency histogram
app.middleware("http")(metrics_middleware_factory())

app.include_router(session_store_router)
app.include_router(completion_router)

_origins = [o.strip() for o in (os.getenv("MEDASSIST_CORS_ORIGINS") or "http://localhost:8080").split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
def root():
    return {"name": "MedAssist Functions API", "version": "0.1.0"}


@app.get("/health")
def health():
    return {
        "status": "ok",
        "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
        "components": {
            "api": "ok",
            "session_store": (os.getenv("MEDASSIST_SESSION_STORE_IMPL") or "memory").lower(),
        },
    }


@app.get("/metrics")
def metrics() -> Response:
    data = generate_latest(REGISTRY)
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)
