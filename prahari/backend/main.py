"""
Prahari — Main FastAPI Application
Geopolitical Instability Fusion Service
"""

import asyncio
import logging
import sys
import os

# Add project root to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from contextlib import asynccontextmanager
from typing import Any, Callable
from fastapi import Body, FastAPI, HTTPException, Query, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from backend.config import settings
from backend.models import UnifiedAlert
from backend.redis_manager import RedisStreamManager
from backend.websocket_manager import ConnectionManager

from fusion_engine.context import IntelligenceContext

# ─── Logging ───────────────────────────────────────
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(name)-20s │ %(levelname)-7s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("prahari.main")

# ─── Globals ───────────────────────────────────────
stream_manager = RedisStreamManager(
    redis_url=settings.redis_url,
    stream_key=settings.redis_stream_key,
    scores_key=settings.redis_scores_key,
    use_redis=settings.use_redis,
)
ws_manager = ConnectionManager()

context = IntelligenceContext(settings)

# Single writer: ingestion and refresh never interleave
fusion_lock = asyncio.Lock()

# Alerts inserted/merged since the last push, keyed by id (latest version wins)
_pending_findings: dict[str, UnifiedAlert] = {}


def _on_alert(alert: UnifiedAlert):
    _pending_findings[alert.id] = alert


context.alerts.add_listener(_on_alert)


async def _flush_findings():
    """Push pending alert changes to WebSocket clients and the alert stream."""
    if not _pending_findings:
        return
    alerts = list(_pending_findings.values())
    _pending_findings.clear()

    await ws_manager.broadcast_findings(alerts, context.alerts.alert_counts())
    await stream_manager.publish_alerts([a.model_dump(mode="json") for a in alerts])
    logger.info("Pushed %d updated findings to %d clients", len(alerts), ws_manager.connection_count)


def _military(payload: Any):
    if not isinstance(payload, dict):
        raise HTTPException(status_code=422, detail="military payload needs 'flights' and 'vessels' lists")
    return context.ingest_military(payload.get("flights") or [], payload.get("vessels") or [])


# Ingest kind → handler taking the request body
INGEST_HANDLERS: dict[str, Callable[[Any], Any]] = {
    "protests": context.ingest_protests,
    "conflicts": context.ingest_conflicts,
    "ucdp": context.ingest_ucdp,
    "hapi": context.ingest_hapi,
    "displacement": context.ingest_displacement,
    "climate": context.ingest_climate,
    "military": _military,
    "news": context.ingest_news,
    "outages": context.ingest_outages,
    "strikes": context.ingest_strikes,
    "aviation": context.ingest_aviation,
    "advisories": context.ingest_advisories,
    "region-alerts": context.ingest_region_alerts,
    "ais-disruptions": context.ingest_ais_disruptions,
    "fires": context.ingest_satellite_fires,
    "temporal-anomalies": context.ingest_temporal_anomalies,
    "theater-postures": context.ingest_theater_postures,
    "cascade": context.ingest_cascades,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: connect storage and load boundaries on startup."""
    logger.info("═══════════════════════════════════════════════")
    logger.info("  PRAHARI — Instability Fusion Engine          ")
    logger.info("  Version %s", settings.app_version)
    logger.info("═══════════════════════════════════════════════")

    await stream_manager.connect()

    if await context.load_geometry():
        logger.info("Country boundaries loaded (%d countries)", len(context.geometry.all_codes()))
    else:
        logger.warning("Running without country boundaries; attribution uses text and bounds only")

    cached = await stream_manager.load_scores()
    if cached:
        context.set_has_cached_scores(True)
        logger.info("Found cached scores for %d countries", len(cached))

    yield

    logger.info("Shutting down Prahari...")
    await stream_manager.close()


# ─── FastAPI App ───────────────────────────────────
app = FastAPI(
    title="Prahari",
    description="Country instability scoring and correlated alert feed",
    version=settings.app_version,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ─── REST Endpoints ───────────────────────────────
@app.get("/")
async def root():
    return {
        "name": "Prahari",
        "version": settings.app_version,
        "status": "operational",
        "geometry_loaded": context.geometry.is_loaded,
        "ws_clients": ws_manager.connection_count,
    }


@app.post("/api/ingest/{kind}")
async def ingest(kind: str, payload: Any = Body(...)):
    """Ingest one batch of upstream records of the given kind."""
    handler = INGEST_HANDLERS.get(kind)
    if handler is None:
        raise HTTPException(status_code=404, detail={
            "error": f"Unknown ingest kind: {kind}", "available": list(INGEST_HANDLERS),
        })
    if kind != "military" and not isinstance(payload, list):
        raise HTTPException(status_code=422, detail="body must be a JSON list of records")

    async with fusion_lock:
        result = handler(payload)
        await _flush_findings()

    if isinstance(result, list):
        return {"kind": kind, "alerts": len(result)}
    return {"kind": kind, "stats": result}


@app.post("/api/refresh")
async def refresh():
    """Run one fusion cycle and push any new or changed alerts."""
    async with fusion_lock:
        result = context.refresh()
        await _flush_findings()
        await stream_manager.save_scores([s.model_dump(mode="json") for s in result.scores])

    return {
        "scores": len(result.scores),
        "alerts": len(result.new_alerts),
        "convergence_cells": len(result.convergence_alerts),
        "learning": context.learning.progress(),
    }


@app.get("/api/cii")
async def get_cii():
    """Country Instability Index scores as of the last refresh."""
    scores = context.last_scores
    return {"count": len(scores), "countries": scores}


@app.get("/api/cii/{code}")
async def get_country_cii(code: str):
    code = code.upper()
    detail = next((s for s in context.last_scores if s.code == code), None)
    score = context.scorer.score_one(code)
    if detail is None and score is None:
        raise HTTPException(status_code=404, detail=f"No score for {code}")
    return {"code": code, "score": score if score is not None else detail.score, "detail": detail}


@app.get("/api/alerts")
async def get_alerts(hours: float = Query(24, gt=0, le=168)):
    alerts = context.alerts.get_recent_alerts(hours)
    return {"count": len(alerts), "alerts": alerts}


@app.get("/api/alerts/counts")
async def get_alert_counts():
    return context.alerts.alert_counts()


@app.get("/api/signals")
async def get_signals():
    """Geographic signal summary with regional convergence and digest."""
    return context.aggregator.get_summary()


@app.get("/api/strategic-risk")
async def get_strategic_risk(breaking_alert_score: float = Query(0, ge=0)):
    async with fusion_lock:
        return context.strategic_risk(breaking_alert_score=breaking_alert_score)


@app.get("/api/ingest-stats")
async def get_ingest_stats():
    return context.store.get_ingest_stats()


@app.get("/api/learning")
async def get_learning():
    return context.learning.progress()


# ─── WebSocket Endpoint ───────────────────────────
@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """WebSocket endpoint for findings-updated pushes."""
    await ws_manager.connect(websocket)

    await _send_state(websocket, "initial_state")

    try:
        while True:
            data = await websocket.receive_text()
            if ws_manager.handle_message(websocket, data):
                await _send_state(websocket, "subscribed")
            else:
                logger.debug("Ignoring client message: %s", data)
    except WebSocketDisconnect:
        ws_manager.disconnect(websocket)


async def _send_state(websocket: WebSocket, action: str):
    alerts = ws_manager.visible(context.alerts.get_alerts(), ws_manager.min_priority(websocket))
    await ws_manager.send_to(websocket, {
        "action": action,
        "alerts": [a.model_dump(mode="json") for a in alerts],
        "counts": context.alerts.alert_counts(),
        "learning": context.learning.progress(),
    })


# ─── Run ───────────────────────────────────────────
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host=settings.host,
        port=settings.port,
        reload=True,
    )
