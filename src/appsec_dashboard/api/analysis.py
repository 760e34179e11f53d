"""Code review & threat modeling API — one-shot analysis runs.

Learn: Each POST opens a throwaway agent conversation over a source
directory on the server, saves the markdown report, and returns it.
These never touch the caller's chat session.
"""

from fastapi import APIRouter, Depends, Request

from appsec_dashboard.agent.backends import Capability
from appsec_dashboard.agent.runner import get_agent_runner
from appsec_dashboard.schemas.chat import AnalysisRequest, AnalysisResponse, ReportList
from appsec_dashboard.services.analysis_service import AnalysisService

router = APIRouter()


def _svc(request: Request) -> AnalysisService:
    return AnalysisService(
        backend=request.app.state.session_registry.backend,
        runner=get_agent_runner(request),
    )


# ─── Code review ─────────────────────────────────────────


@router.post("/code-review", response_model=AnalysisResponse)
async def code_review(body: AnalysisRequest, svc: AnalysisService = Depends(_svc)):
    """Review a source tree for security vulnerabilities."""
    report = await svc.analyze(Capability.CODE_REVIEW, body.repoPath, body.query)
    return AnalysisResponse(
        message="Code review completed",
        reportPath=report.report_path,
        reportContent=report.content,
    )


@router.get("/code-review/reports", response_model=ReportList)
async def code_review_reports(svc: AnalysisService = Depends(_svc)):
    return ReportList(reports=svc.list_reports())


# ─── Threat modeling ─────────────────────────────────────


@router.post("/threat-modeling", response_model=AnalysisResponse)
async def threat_modeling(body: AnalysisRequest, svc: AnalysisService = Depends(_svc)):
    """Produce a STRIDE threat model for a source tree."""
    report = await svc.analyze(Capability.THREAT_MODEL, body.repoPath, body.query)
    return AnalysisResponse(
        message="Threat modeling completed",
        reportPath=report.report_path,
        reportContent=report.content,
    )


@router.get("/threat-modeling/reports", response_model=ReportList)
async def threat_modeling_reports(svc: AnalysisService = Depends(_svc)):
    return ReportList(reports=svc.list_reports(name_filter="threat"))
