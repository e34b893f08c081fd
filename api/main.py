"""FastAPI server for Switchboard."""

from __future__ import annotations

import os
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

import uvicorn
from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from switchboard import (
    AllProvidersFailedError,
    BudgetExceededError,
    Complexity,
    CostCategory,
    InsufficientModelsError,
    NoEligibleModelError,
    Orchestrator,
    Priority,
    RateLimitExceededError,
    RequestContext,
    RequestOptions,
    SynthesisDisabledError,
    SynthesisMethod,
    TaskType,
    Urgency,
    ValidationError,
    __version__,
)


ERROR_STATUS = {
    ValidationError: 422,
    BudgetExceededError: 402,
    NoEligibleModelError: 429,
    RateLimitExceededError: 429,
    AllProvidersFailedError: 502,
    InsufficientModelsError: 503,
    SynthesisDisabledError: 503,
}


def _get_api_key() -> Optional[str]:
    return os.getenv("SWITCHBOARD_API_KEY")


def _require_api_key(x_api_key: Optional[str] = Header(default=None)) -> None:
    api_key = _get_api_key()
    if api_key and x_api_key != api_key:
        raise HTTPException(status_code=401, detail="Invalid API key")


class ContextModel(BaseModel):
    task_type: TaskType = TaskType.GENERAL
    language: str = Field("en", min_length=1)
    urgency: Urgency = Urgency.MEDIUM
    complexity: Complexity = Complexity.MEDIUM
    priority: Priority = Priority.MEDIUM
    budget_constrained: bool = False
    preferred_model: Optional[str] = None
    industry: Optional[str] = None
    specialization: bool = False
    category: CostCategory = CostCategory.ANALYSIS

    def to_context(self) -> RequestContext:
        return RequestContext(**self.model_dump())


class OptionsModel(BaseModel):
    system_prompt: Optional[str] = None
    max_tokens: int = Field(4000, ge=1)
    temperature: float = Field(0.7, ge=0.0, le=2.0)
    model: Optional[str] = None
    allow_fallback: bool = True
    timeout_s: Optional[float] = Field(None, gt=0)

    def to_options(self) -> RequestOptions:
        return RequestOptions(**self.model_dump())


class ProcessRequest(BaseModel):
    content: str
    context: Optional[ContextModel] = None
    options: OptionsModel = Field(default_factory=OptionsModel)


class SynthesizeRequest(ProcessRequest):
    models: Optional[List[str]] = None
    method: Optional[SynthesisMethod] = None


class TickRequest(BaseModel):
    now: Optional[float] = None


def create_app(orchestrator: Optional[Orchestrator] = None) -> FastAPI:
    """Build the app around ``orchestrator`` (from the environment by default)."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        await app.state.orchestrator.aclose()

    app = FastAPI(title="Switchboard API", version=__version__, lifespan=lifespan)
    app.state.orchestrator = orchestrator or Orchestrator.from_env()

    def _orchestrator() -> Orchestrator:
        return app.state.orchestrator

    for error_type, status_code in ERROR_STATUS.items():
        def handler(request: Request, exc: Exception, status_code: int = status_code) -> JSONResponse:
            return JSONResponse(
                status_code=status_code,
                content={"error": type(exc).__name__, "detail": str(exc)},
            )
        app.add_exception_handler(error_type, handler)

    @app.get("/health")
    def health() -> Dict[str, str]:
        return {"status": "ok"}

    @app.post("/process", dependencies=[Depends(_require_api_key)])
    async def process(
        req: ProcessRequest, orchestrator: Orchestrator = Depends(_orchestrator)
    ) -> Dict[str, Any]:
        context = req.context.to_context() if req.context else None
        result = await orchestrator.process(context, req.content, req.options.to_options())
        return result.to_dict()

    @app.post("/synthesize", dependencies=[Depends(_require_api_key)])
    async def synthesize(
        req: SynthesizeRequest, orchestrator: Orchestrator = Depends(_orchestrator)
    ) -> Dict[str, Any]:
        context = req.context.to_context() if req.context else None
        result = await orchestrator.synthesize(
            context, req.content, req.options.to_options(), models=req.models, method=req.method,
        )
        return result.to_dict()

    @app.get("/status", dependencies=[Depends(_require_api_key)])
    def status(orchestrator: Orchestrator = Depends(_orchestrator)) -> Dict[str, Any]:
        return orchestrator.get_status()

    @app.post("/tick", dependencies=[Depends(_require_api_key)])
    def tick(
        req: TickRequest = TickRequest(), orchestrator: Orchestrator = Depends(_orchestrator)
    ) -> Dict[str, Any]:
        return orchestrator.tick(req.now)

    @app.get("/ledger/report", dependencies=[Depends(_require_api_key)])
    def ledger_report(orchestrator: Orchestrator = Depends(_orchestrator)) -> Dict[str, Any]:
        report = orchestrator.ctx.ledger.get_report()
        return {
            "spent": report.spent,
            "budget": report.budget,
            "utilization": report.utilization,
            "requests": report.requests,
            "savings": report.savings,
            "savings_rate": report.savings_rate,
            "monthly_projection": report.projections.monthly_projection,
            "top_models": [{"model": m, "cost": c} for m, c in report.top_models],
            "recommendations": [rec.__dict__ for rec in report.recommendations],
        }

    @app.post("/ledger/reset", dependencies=[Depends(_require_api_key)])
    def ledger_reset(orchestrator: Orchestrator = Depends(_orchestrator)) -> Dict[str, Any]:
        snapshot = orchestrator.reset_period()
        return {
            "period_start": snapshot.period_start.isoformat(),
            "period_end": snapshot.period_end.isoformat(),
            "total": snapshot.total,
            "requests": snapshot.requests,
            "utilization": snapshot.utilization,
        }

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(
        app,
        host=os.getenv("SWITCHBOARD_HOST", "127.0.0.1"),
        port=int(os.getenv("SWITCHBOARD_PORT", "8000")),
    )
