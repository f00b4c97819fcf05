"""FastAPI server for Plansmith."""
from __future__ import annotations

from fastapi import FastAPI, HTTPException, Request
from typing import Any, Dict

from plansmith.config import get_config
from plansmith.indicators import SystemIndicators
from plansmith.intent import IntentSummary
from plansmith.pipeline import SynthesisEngine, UnknownCandidateError
from plansmith.store import StoreUnavailableError

app = FastAPI(title="Plansmith")


def _intent_fields(payload: Dict[str, Any]) -> tuple[IntentSummary | None, str | None]:
    summary = payload.get("summary")
    text = payload.get("text")
    if summary is not None and not isinstance(summary, dict):
        raise HTTPException(status_code=400, detail="summary must be an object")
    if text is not None and not isinstance(text, str):
        raise HTTPException(status_code=400, detail="text must be a string")
    return (IntentSummary.from_dict(summary) if summary is not None else None), text


def _optional_float(payload: Dict[str, Any], key: str) -> float | None:
    value = payload.get(key)
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail=f"{key} must be a number")


@app.on_event("startup")
def _startup() -> None:
    config = get_config()
    app.state.config = config
    app.state.engine = SynthesisEngine(config)


@app.get("/health")
async def health():
    """Health check endpoint for monitoring."""
    return {"status": "healthy", "service": "plansmith"}


@app.post("/api/encode")
def encode_api(payload: dict, request: Request):
    summary, text = _intent_fields(payload)
    engine: SynthesisEngine = request.app.state.engine
    encoding = engine.encode(summary, text=text, user_id=payload.get("user_id"))
    return encoding.to_dict()


@app.post("/api/synthesize")
def synthesize_api(payload: dict, request: Request):
    summary, text = _intent_fields(payload)
    indicators = payload.get("indicators")
    if indicators is not None and not isinstance(indicators, dict):
        raise HTTPException(status_code=400, detail="indicators must be an object")
    engine: SynthesisEngine = request.app.state.engine
    result = engine.synthesize(
        summary,
        text=text,
        user_id=payload.get("user_id"),
        indicators=SystemIndicators.from_dict(indicators) if indicators else None,
        timeout=_optional_float(payload, "timeout_seconds"),
        threshold_override=_optional_float(payload, "threshold_override"),
    )
    return result.to_dict()


@app.post("/api/record-choice")
def record_choice_api(payload: dict, request: Request):
    candidate_id = payload.get("candidate_id")
    if not candidate_id or not isinstance(candidate_id, str):
        raise HTTPException(status_code=400, detail="candidate_id is required")
    if "success" not in payload:
        raise HTTPException(status_code=400, detail="success is required")
    summary, text = _intent_fields(payload)
    engine: SynthesisEngine = request.app.state.engine
    try:
        ack = engine.record_choice(
            candidate_id,
            success=bool(payload.get("success")),
            duration=_optional_float(payload, "duration") or 0.0,
            user_id=payload.get("user_id"),
            summary=summary,
            text=text,
            timed_out=bool(payload.get("timed_out", False)),
        )
    except UnknownCandidateError:
        raise HTTPException(status_code=404, detail=f"unknown candidate: {candidate_id}")
    return ack.to_dict()


@app.get("/api/stats")
def stats_api(request: Request):
    try:
        return {"stats": request.app.state.engine.stats()}
    except StoreUnavailableError as exc:
        raise HTTPException(status_code=503, detail=str(exc))


@app.get("/api/stats/{plan_type}")
def plan_stats_api(plan_type: str, request: Request):
    engine: SynthesisEngine = request.app.state.engine
    try:
        stats = engine.store.get_stats(plan_type)
    except StoreUnavailableError as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    if stats is None:
        raise HTTPException(status_code=404, detail="No statistics for plan type")
    return stats.to_dict()


@app.get("/api/profiles/{user_id}")
def profile_api(user_id: str, request: Request):
    try:
        profile = request.app.state.engine.profile(user_id)
    except StoreUnavailableError as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    if profile is None:
        raise HTTPException(status_code=404, detail="Profile not found")
    return profile.to_dict()


@app.get("/api/regimes")
def regimes_api(request: Request):
    return {"regimes": request.app.state.engine.policy.describe()}


@app.get("/api/catalog")
def catalog_api(request: Request):
    engine: SynthesisEngine = request.app.state.engine
    return {
        "plan_types": [
            {
                "name": plan.name,
                "title": plan.title,
                "description": plan.description,
                "role": plan.role or None,
                "estimated_duration": plan.estimated_duration,
                "estimated_cost": plan.estimated_cost,
            }
            for plan in engine.catalog.plan_types.values()
        ]
    }


def main():
    import uvicorn
    config = get_config()
    host = config.server.get("host", "127.0.0.1")
    port = int(config.server.get("port", 8120))
    uvicorn.run("plansmith.server:app", host=host, port=port, reload=False)
