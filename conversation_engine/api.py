"""
Conversation Engine - FastAPI Router
====================================

Thin HTTP surface over the turn protocol. The router is built around an
injected RouterOrchestrator; there are no module-level engine instances.

Endpoints:
    POST   /agents/turn                               → Process one user turn
    POST   /agents/workflows/{entity_type}/start      → Start a data-entry workflow
    POST   /agents/workflows/{workflow_id}/fields     → Submit the current field
    POST   /agents/workflows/{workflow_id}/confirm    → Confirm and persist
    POST   /agents/workflows/{workflow_id}/cancel     → Cancel
    POST   /agents/entities/{entity_type}             → CRUD dispatcher
    DELETE /agents/sessions/{session_id}/history      → Reset session memory
    GET    /agents/sessions/{session_id}              → Inspect session state
    GET    /agents/skills                             → Registered skills per domain
    GET    /agents/health                             → Health check

Run locally:
    uvicorn conversation_engine.api:create_app --factory --reload
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import APIRouter, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from conversation_engine.config import configure_logging
from conversation_engine.errors import NotFoundError
from conversation_engine.models import SkillResult, TurnResult
from conversation_engine.orchestrator import RouterOrchestrator

logger = logging.getLogger(__name__)


# =============================================================================
# Request Models
# =============================================================================

class TurnRequest(BaseModel):
    session_id: str
    message: str
    user_id: Optional[str] = None


class WorkflowStartRequest(BaseModel):
    session_id: Optional[str] = None
    user_id: Optional[str] = None


class FieldSubmitRequest(BaseModel):
    """Value for the workflow's current field. `field` is optional but checked if given."""
    value: Any = None
    field: Optional[str] = None


class EntityActionRequest(BaseModel):
    action: str
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)


def _envelope(result: SkillResult) -> Dict[str, Any]:
    """Serialize a skill envelope; not-found failures become HTTP 404."""
    if not result.success and result.metadata.get("error_type") == NotFoundError.error_type:
        raise HTTPException(status_code=404, detail=result.error)
    return result.model_dump(mode="json")


# =============================================================================
# Router
# =============================================================================

def create_router(orchestrator: RouterOrchestrator) -> APIRouter:
    router = APIRouter(prefix="/agents", tags=["conversation-engine"])

    @router.post("/turn", response_model=TurnResult)
    async def process_turn(request: TurnRequest) -> TurnResult:
        if not request.message.strip():
            raise HTTPException(status_code=400, detail="Message must not be empty")
        logger.info(f"[EngineAPI] Turn for session {request.session_id}")
        return await orchestrator.process_turn(request.session_id, request.message, request.user_id)

    @router.post("/workflows/{entity_type}/start")
    async def start_workflow(entity_type: str, request: WorkflowStartRequest):
        result = await orchestrator.start_workflow(
            entity_type, session_id=request.session_id, user_id=request.user_id
        )
        return _envelope(result)

    @router.post("/workflows/{workflow_id}/fields")
    async def submit_field(workflow_id: str, request: FieldSubmitRequest):
        result = await orchestrator.submit_workflow_field(workflow_id, request.field, request.value)
        return _envelope(result)

    @router.post("/workflows/{workflow_id}/confirm")
    async def confirm_workflow(workflow_id: str):
        return _envelope(await orchestrator.confirm_workflow(workflow_id))

    @router.post("/workflows/{workflow_id}/cancel")
    async def cancel_workflow(workflow_id: str):
        return _envelope(await orchestrator.cancel_workflow(workflow_id))

    @router.post("/entities/{entity_type}")
    async def entity_action(entity_type: str, request: EntityActionRequest):
        payload = {**request.payload, "action": request.action}
        result = await orchestrator.execute_entity_action(
            entity_type, payload, session_id=request.session_id, user_id=request.user_id
        )
        return _envelope(result)

    @router.delete("/sessions/{session_id}/history")
    async def clear_history(session_id: str):
        return await orchestrator.clear_history(session_id)

    @router.get("/sessions/{session_id}")
    async def session_state(session_id: str):
        return orchestrator.get_session_state(session_id)

    @router.get("/skills")
    async def list_skills():
        return {"domains": orchestrator.list_skills()}

    @router.get("/health")
    async def health():
        skills = orchestrator.list_skills()
        return {
            "status": "ok",
            "domains": len(skills),
            "skills_loaded": sum(len(s) for s in skills.values()),
            "mock_mode": orchestrator.settings.mock_mode,
        }

    return router


def create_app(orchestrator: Optional[RouterOrchestrator] = None) -> FastAPI:
    """Build the FastAPI app. Defaults to `create_engine()` with packaged settings."""
    configure_logging()

    if orchestrator is None:
        from conversation_engine.factory import create_engine
        orchestrator = create_engine()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("[EngineAPI] Starting conversation engine")
        logger.info(f"   Mock mode: {orchestrator.settings.mock_mode}")
        yield
        logger.info("[EngineAPI] Shutting down conversation engine")

    app = FastAPI(
        title="Conversation Engine",
        description="Routed, memory-aware conversations and structured data-entry workflows.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(create_router(orchestrator))
    return app
