"""HTTP trigger for scheduled or manual scans."""

from __future__ import annotations

from typing import Optional

import uvicorn
from fastapi import APIRouter, Depends, FastAPI, Header, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from riskintel.ai import AiServiceError
from riskintel.config import Config, ConfigurationError
from riskintel.pipeline import RiskIntelligenceScanner
from riskintel.utils import setup_logger

logger = setup_logger(__name__)

router = APIRouter()


class ScanRequest(BaseModel):
    organization_id: Optional[str] = None


def get_scanner() -> RiskIntelligenceScanner:
    return RiskIntelligenceScanner.from_config(Config)


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def _config_failure(request: Request, exc: Exception) -> JSONResponse:
    logger.error("❌ Scan rejected: %s", exc)
    return JSONResponse(status_code=500, content={"success": False, "error": str(exc)})


@router.get("/health")
async def health() -> dict:
    return {"status": "ok"}


@router.post("/")
@router.post("/scan-rss-feeds")
async def trigger_scan(
    body: Optional[ScanRequest] = None,
    authorization: Optional[str] = Header(default=None),
    scanner: RiskIntelligenceScanner = Depends(get_scanner),
) -> dict:
    summary = await scanner.scan(
        body.organization_id if body else None,
        access_token=_bearer_token(authorization),
    )
    return summary.to_dict()


def create_app() -> FastAPI:
    app = FastAPI(title="Risk Intelligence Scanner")
    app.include_router(router)
    app.add_exception_handler(ConfigurationError, _config_failure)
    app.add_exception_handler(AiServiceError, _config_failure)
    return app


app = create_app()


def main() -> None:
    uvicorn.run("riskintel.api:app", host=Config.API_HOST, port=Config.API_PORT)


if __name__ == "__main__":
    main()
