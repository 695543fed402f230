"""
Jobs agendados do gate, chamados pelo scheduler via POST.
"""

from fastapi import APIRouter

from .compliance import router as _compliance_jobs

router = APIRouter(prefix="/jobs", tags=["Jobs"])
router.include_router(_compliance_jobs)
