"""Health check endpoint."""

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from ai_chronicle.health import check_availability

router = APIRouter()


@router.get("/health")
async def health(request: Request):
    """Report whether the model and illustration credentials are usable."""
    report = check_availability(request.app.state.settings)
    status_code = 500 if report.status == "error" else 200
    return JSONResponse(report.model_dump(exclude_none=True), status_code=status_code)
