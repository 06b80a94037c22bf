import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request, status
from pydantic import ValidationError

from ..config import settings
from ..domain.models import Actor
from ..infrastructure.database.connection import init_db
from ..orchestration.orchestrator import DischargeOrchestrator
from ..orchestration.steps import STEP_ORDER
from ..schemas.orchestration import OrchestrationRequest
from .dependencies import get_actor, get_orchestrator
from .schemas import HealthResponse, OrchestrateResponse

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


app = FastAPI(title="Vet Discharge Orchestrator", lifespan=lifespan)

# --- Endpoints ---


@app.post("/discharge/orchestrate", response_model=OrchestrateResponse)
async def orchestrate_discharge(
    request: Request,
    actor: Actor = Depends(get_actor),
    orchestrator: DischargeOrchestrator = Depends(get_orchestrator),
):
    """
    Runs the discharge workflow for one case.
    Step failures are reported in the body; only bad input is an HTTP error.
    """
    try:
        body = await request.json()
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail={"error": "Invalid JSON body"})

    try:
        orchestration_request = OrchestrationRequest.model_validate(body)
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "error": "Validation failed",
                "details": e.errors(include_url=False, include_context=False, include_input=False),
            },
        )

    try:
        result = await orchestrator.orchestrate(orchestration_request, actor=actor)
    except Exception as e:
        logger.exception("Discharge orchestration raised")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))

    return OrchestrateResponse(success=result.success, data=result)


@app.get("/discharge/orchestrate", response_model=HealthResponse)
def health_check():
    return HealthResponse(
        status="ok",
        service="discharge-orchestrator",
        steps=[step.value for step in STEP_ORDER],
    )
