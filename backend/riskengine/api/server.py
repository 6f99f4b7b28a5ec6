"""Read-only status API over a running RiskEngine."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, List

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware

from riskengine.services.market.indicators import InsufficientHistory

if TYPE_CHECKING:
    from riskengine.app.engine import RiskEngine

JsonDict = Dict[str, Any]


def _engine(request: Request) -> "RiskEngine":
    return request.app.state.engine


def create_app(engine: "RiskEngine") -> FastAPI:
    app = FastAPI(title="Risk Engine API", version="0.1.0")
    app.state.engine = engine

    app.add_middleware(
        CORSMiddleware,
        allow_origins=engine.config.api.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    def health() -> JsonDict:
        return {"ok": True}

    @app.get("/status")
    def status(request: Request) -> JsonDict:
        return dict(_engine(request).status.__dict__)

    @app.get("/risk")
    def risk(request: Request) -> JsonDict:
        rm = _engine(request).risk
        if rm.last_metrics is None:
            raise HTTPException(status_code=503, detail="risk metrics not yet available")
        return {
            "metrics": rm.last_metrics.to_dict(),
            "actions": [
                {
                    "kind": a.kind.value,
                    "reason": a.reason,
                    "orders_placed": len(a.placed),
                    "failures": [f.__dict__ for f in a.failures],
                }
                for a in rm.last_actions
            ],
            "limits": rm.limits.model_dump(),
        }

    @app.get("/indicators")
    def indicators(request: Request) -> JsonDict:
        eng = _engine(request)
        breadth = eng.last_snapshot.market_breadth if eng.last_snapshot else None
        try:
            snapshot = eng.indicators.snapshot(eng.sessions.previous_ohlc(), breadth)
        except InsufficientHistory as e:
            raise HTTPException(status_code=503, detail=str(e))
        return snapshot.to_dict()

    @app.get("/alerts")
    def alerts(request: Request, limit: int = 50) -> List[JsonDict]:
        return [a.to_dict() for a in _engine(request).dashboard.recent(limit)]

    @app.get("/metrics")
    def metric_names(request: Request) -> List[str]:
        return _engine(request).monitor.names()

    @app.get("/metrics/{name}")
    def metric_series(name: str, request: Request, limit: int = 100) -> List[JsonDict]:
        points = _engine(request).monitor.series(name)
        if not points:
            raise HTTPException(status_code=404, detail=f"unknown metric: {name}")
        return [{"value": p.value, "timestamp": p.timestamp.isoformat()} for p in points[-limit:]]

    return app
