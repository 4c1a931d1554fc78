# tmd/server.py
"""
FastAPI server for the tmd CLI.
"""

from collections import Counter
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from starlette.responses import JSONResponse

from tmd.utils.log import get_logger
from tmd.analysis.config import DetectorConfig
from tmd.analysis.detector import ModeDetector, TrajectoryRegistry
from tmd.analysis.errors import OutOfOrderPointError
from tmd.analysis.reasons import REASON_LABELS
from tmd.utils.validate import ClassifiedPoint, ClassifyRequest, ClassifyResponse, PointIn

logger = get_logger(__name__)


def create_app(cfg: Optional[DetectorConfig] = None) -> FastAPI:
    """
    Build a FastAPI instance with its own trajectory registry.
    """
    app = FastAPI()
    app.state.cfg = cfg or DetectorConfig.default()
    app.state.registry = TrajectoryRegistry(ModeDetector(app.state.cfg))

    @app.get("/api/status", response_class=JSONResponse)
    async def status(request: Request) -> JSONResponse:
        return JSONResponse(
            status_code=200,
            content={"status": "ok", "trajectories": len(request.app.state.registry)},
        )

    @app.get("/api/reasons", response_class=JSONResponse)
    async def get_reasons() -> JSONResponse:
        return JSONResponse(
            status_code=200,
            content={code.value: label for code, label in REASON_LABELS.items()},
        )

    @app.post("/api/classify", response_model=ClassifyResponse)
    def classify(request: Request, body: ClassifyRequest):
        """
        Classify a whole track from a fresh state; nothing is retained.
        """
        cfg = DetectorConfig.strict() if body.strict else request.app.state.cfg
        points = [p.to_point() for p in body.points]
        try:
            classified = ModeDetector(cfg).classify_track(points)
        except OutOfOrderPointError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        return ClassifyResponse(
            points=classified,
            count=len(classified),
            modes=dict(Counter(c.mode for c in classified)),
        )

    @app.post("/api/trajectories/{trajectory_id}/points", response_model=list[ClassifiedPoint])
    def add_points(request: Request, trajectory_id: str, points: list[PointIn]):
        """
        Append fixes to a live trajectory and return their classifications.
        """
        registry: TrajectoryRegistry = request.app.state.registry
        try:
            return registry.process_many(trajectory_id, [p.to_point() for p in points])
        except OutOfOrderPointError as exc:
            logger.warning("Rejected out-of-order point: %s", exc)
            raise HTTPException(status_code=409, detail=str(exc)) from exc

    @app.delete("/api/trajectories/{trajectory_id}", response_class=JSONResponse)
    async def delete_trajectory(request: Request, trajectory_id: str) -> JSONResponse:
        if not request.app.state.registry.drop(trajectory_id):
            raise HTTPException(status_code=404, detail=f"Unknown trajectory {trajectory_id}")
        return JSONResponse(status_code=200, content={"deleted": trajectory_id})

    return app
