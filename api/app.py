"""FastAPI application for the quality pipeline REST API.

Exposes checklist generation, execution (with manual review resumption),
and escalation endpoints. Supports optional API key authentication.

Usage:
    uvicorn api.app:create_app --factory
"""

from __future__ import annotations

import importlib.metadata
import logging

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware

from api.schemas import (
    ChecklistRequest,
    ChecklistResponse,
    ErrorResponse,
    EscalationRequest,
    ExecutionResponse,
    HealthResponse,
    ReviewResponse,
    ReviewSubmission,
)
from shared.errors import ChecklistStructureError, MaxEscalationReached
from shared.models import EscalationRecord
from validation.manual import ReviewTicket

logger = logging.getLogger(__name__)


# --- Configuration ---


class APIConfig:
    """API configuration with sensible defaults.

    Attributes:
        api_key: Optional API key for authentication. Empty string disables auth.
        cors_origins: Allowed CORS origins.
    """

    def __init__(
        self,
        api_key: str = "",
        cors_origins: list[str] | None = None,
    ) -> None:
        self.api_key = api_key
        self.cors_origins = cors_origins or ["*"]


# --- App factory ---


def create_app(config: APIConfig | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        config: API configuration. Uses defaults if not provided.

    Returns:
        Configured FastAPI app.
    """
    if config is None:
        config = APIConfig()

    try:
        version = importlib.metadata.version("quality-pipeline")
    except importlib.metadata.PackageNotFoundError:
        version = "0.1.0"

    app = FastAPI(
        title="quality-pipeline API",
        description="REST API for generating, running and routing quality validation checklists.",
        version=version,
        responses={401: {"model": ErrorResponse}},
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.config = config

    # --- Dependencies ---

    async def verify_api_key(
        request: Request,
        x_api_key: str | None = Header(default=None),
    ) -> None:
        """Verify API key if authentication is configured."""
        cfg: APIConfig = request.app.state.config
        if not cfg.api_key:
            return
        if x_api_key != cfg.api_key:
            raise HTTPException(status_code=401, detail="Invalid or missing API key.")

    def _get_pipeline():
        if not hasattr(app.state, "pipeline"):
            from pipeline import QualityPipeline
            from shared.config import configure_logging, load_config

            pipeline_config = load_config()
            configure_logging(pipeline_config.logging)
            app.state.pipeline = QualityPipeline(pipeline_config)
        return app.state.pipeline

    auth = [Depends(verify_api_key)]

    def _execution_response(outcome) -> ExecutionResponse:
        return ExecutionResponse(
            result=outcome.result,
            responsibilities=outcome.responsibilities,
            escalations=outcome.escalations,
        )

    # --- Routes ---

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        """Health check endpoint."""
        return HealthResponse(status="ok", version=version)

    @app.post("/checklists", response_model=ChecklistResponse, dependencies=auth)
    async def generate_checklist(req: ChecklistRequest) -> ChecklistResponse:
        """Generate the ordered checklist for a change."""
        try:
            checklist = _get_pipeline().generate_checklist(req.context)
        except ChecklistStructureError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
        return ChecklistResponse(checklist=checklist, item_ids=[i.id for i in checklist.items])

    @app.post("/executions", response_model=ExecutionResponse, dependencies=auth)
    async def run_execution(req: ChecklistRequest) -> ExecutionResponse:
        """Generate and execute a checklist; failures are routed to their owners."""
        try:
            outcome = await _get_pipeline().run(req.context)
        except ChecklistStructureError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
        return _execution_response(outcome)

    @app.get("/executions/{execution_id}", response_model=ExecutionResponse, dependencies=auth)
    async def get_execution(execution_id: str) -> ExecutionResponse:
        """Current progress of an execution."""
        try:
            snapshot = _get_pipeline().executor.snapshot(execution_id)
        except KeyError as e:
            raise HTTPException(status_code=404, detail=f"Execution '{execution_id}' not found.") from e
        return ExecutionResponse(result=snapshot)

    @app.post(
        "/executions/{execution_id}/resume", response_model=ExecutionResponse, dependencies=auth
    )
    async def resume_execution(execution_id: str) -> ExecutionResponse:
        """Continue an execution that was waiting for manual input."""
        try:
            outcome = await _get_pipeline().resume(execution_id)
        except KeyError as e:
            raise HTTPException(status_code=404, detail=f"Execution '{execution_id}' not found.") from e
        except ValueError as e:
            raise HTTPException(status_code=409, detail=str(e)) from e
        return _execution_response(outcome)

    @app.post(
        "/executions/{execution_id}/cancel", response_model=ExecutionResponse, dependencies=auth
    )
    async def cancel_execution(execution_id: str) -> ExecutionResponse:
        """Stop issuing new work for an execution."""
        try:
            result = _get_pipeline().executor.cancel(execution_id)
        except KeyError as e:
            raise HTTPException(status_code=404, detail=f"Execution '{execution_id}' not found.") from e
        return ExecutionResponse(result=result)

    @app.get("/reviews", response_model=list[ReviewTicket], dependencies=auth)
    async def list_reviews(execution_id: str | None = None) -> list[ReviewTicket]:
        """Manual review tickets still waiting for a human."""
        return _get_pipeline().open_reviews(execution_id)

    @app.post("/reviews/{ticket_id}", response_model=ReviewResponse, dependencies=auth)
    async def submit_review(ticket_id: str, req: ReviewSubmission) -> ReviewResponse:
        """Submit a manual review result, resuming the execution when possible."""
        try:
            outcome = await _get_pipeline().submit_manual_result(
                ticket_id, req.result, req.submitted_by, resume=req.resume
            )
        except KeyError as e:
            raise HTTPException(status_code=404, detail=f"Review ticket '{ticket_id}' not found.") from e
        except ValueError as e:
            raise HTTPException(status_code=409, detail=str(e)) from e
        if outcome is None:
            return ReviewResponse(ticket_id=ticket_id)
        return ReviewResponse(
            ticket_id=ticket_id,
            resumed=True,
            result=outcome.result,
            responsibilities=outcome.responsibilities,
            escalations=outcome.escalations,
        )

    @app.post("/escalations", response_model=EscalationRecord, dependencies=auth)
    async def escalate(req: EscalationRequest) -> EscalationRecord:
        """Escalate an assignment one level up its escalation path."""
        try:
            return _get_pipeline().escalate(req.assignment_id, req.reason, req.urgency)
        except KeyError as e:
            raise HTTPException(
                status_code=404, detail=f"Assignment '{req.assignment_id}' not found."
            ) from e
        except MaxEscalationReached as e:
            raise HTTPException(status_code=409, detail=str(e)) from e
        except ValueError as e:
            raise HTTPException(status_code=409, detail=str(e)) from e

    return app
