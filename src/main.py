from __future__ import annotations

import time
from typing import Any, Dict, List, Optional, Union

from fastapi import Body, Depends, FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import Configuration
from models import Language, SearchParams
from services.auth import authenticate, try_authenticate
from services.container import Services, get_services
from services.exclusion import resolve_exclusions


class SearchRequest(BaseModel):
    location: str = Field("", description="Free text or a 'lat,lng' string")
    keywords: Optional[str] = None
    radius: str = "1km"
    limit: int = Field(6, ge=1, le=20)
    model: Optional[str] = None
    language: Language = "zh-TW"
    excludeNames: List[str] = Field(default_factory=list)
    userLat: Optional[float] = None
    userLng: Optional[float] = None


class RatingPayload(BaseModel):
    restaurantId: str
    name: str = ""
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = None
    timestamp: int


class PendingReviewPayload(BaseModel):
    id: str
    name: str = ""
    timestamp: int


class PreferencesPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    language: Optional[Language] = None
    defaultModel: Optional[str] = None
    blacklist: Optional[List[str]] = None
    ratings: Optional[Dict[str, RatingPayload]] = None
    pendingReviews: Optional[List[PendingReviewPayload]] = None
    devMode: Optional[bool] = None

    @field_validator("blacklist")
    @classmethod
    def _blacklist_as_set(cls, value: Optional[List[str]]) -> Optional[List[str]]:
        if value is None:
            return None
        return sorted({v.strip() for v in value if v and v.strip()})


class SyncPayload(BaseModel):
    email: Optional[str] = None
    displayName: Optional[str] = None
    photoURL: Optional[str] = None


class HistoryPayload(BaseModel):
    keywords: Union[str, List[str], None] = None
    restaurantNames: Optional[List[str]] = None


def current_user(request: Request, services: Services = Depends(get_services)) -> Dict[str, Any]:
    return authenticate(services.authenticator, request)


def maybe_user(request: Request, services: Services = Depends(get_services)) -> Optional[Dict[str, Any]]:
    return try_authenticate(services.authenticator, request)


def _unwrap_preferences(body: Dict[str, Any]) -> Dict[str, Any]:
    # Older clients post {"preferences": {...}}, sometimes nested twice.
    while isinstance(body.get("preferences"), dict):
        body = body["preferences"]
    return body


def create_app(services: Optional[Services] = None) -> FastAPI:
    app = FastAPI(title="Gourmet Finder")
    app.state.services = services
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.time()
        response = await call_next(request)
        duration_ms = (time.time() - start) * 1000
        level = "ERROR" if response.status_code >= 400 else "INFO"
        query = f"?{request.url.query}" if request.url.query else ""
        logger.log(
            level,
            "{} {}{} -> {} ({:.0f}ms)",
            request.method,
            request.url.path,
            query,
            response.status_code,
            duration_ms,
        )
        return response

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=422,
            content={"error": "Invalid request", "details": jsonable_encoder(exc.errors())},
        )

    @app.get("/", response_class=PlainTextResponse)
    def index() -> str:
        return "Gourmet Finder Server is running"

    @app.get("/healthz")
    def healthz() -> dict:
        return {"status": "ok"}

    @app.post("/api/ai/search")
    async def search(
        req: SearchRequest,
        services: Services = Depends(get_services),
        user: Optional[Dict[str, Any]] = Depends(maybe_user),
    ) -> List[Dict[str, Any]]:
        location = req.location.strip()
        if not location:
            raise HTTPException(status_code=400, detail="location is required")

        params = SearchParams(
            location=location,
            keywords=(req.keywords or "").strip(),
            radius=req.radius,
            model=req.model,
            language=req.language,
            user_lat=req.userLat,
            user_lng=req.userLng,
            excluded_names=frozenset(req.excludeNames),
        )
        uid = user.get("uid") if user else None
        try:
            exclusions, context = await resolve_exclusions(
                services.store if uid else None,
                uid,
                req.excludeNames,
                cap=services.cfg.history_exclusion_cap,
            )
            restaurants = await services.searcher.search(
                params, limit=req.limit, exclude_names=exclusions, context=context
            )
        except Exception as exc:
            logger.exception("AI search failed: {}", exc)
            raise HTTPException(status_code=500, detail=str(exc) or "Internal Server Error")
        return [r.to_dict() for r in restaurants]

    @app.get("/api/user/preferences")
    def get_preferences(
        user: Dict[str, Any] = Depends(current_user),
        services: Services = Depends(get_services),
    ) -> Dict[str, Any]:
        try:
            return services.store.get_preferences(user["uid"])
        except Exception as exc:
            logger.exception("Error fetching preferences: {}", exc)
            raise HTTPException(status_code=500, detail="Internal Server Error")

    @app.post("/api/user/preferences")
    def save_preferences(
        body: Dict[str, Any] = Body(...),
        user: Dict[str, Any] = Depends(current_user),
        services: Services = Depends(get_services),
    ) -> Dict[str, Any]:
        try:
            payload = PreferencesPayload.model_validate(_unwrap_preferences(body))
        except ValidationError as exc:
            raise HTTPException(status_code=400, detail=f"Invalid preferences: {exc.errors()}")
        partial = payload.model_dump(exclude_unset=True, exclude_none=True)
        try:
            services.store.merge_preferences(user["uid"], partial)
        except Exception as exc:
            logger.exception("Error saving preferences: {}", exc)
            raise HTTPException(status_code=500, detail="Internal Server Error")
        return {"message": "Preferences saved successfully"}

    @app.post("/api/user/sync")
    def sync_user(
        body: SyncPayload,
        user: Dict[str, Any] = Depends(current_user),
        services: Services = Depends(get_services),
    ) -> Dict[str, Any]:
        uid = user["uid"]
        try:
            services.store.sync_profile(
                uid, email=body.email, display_name=body.displayName, photo_url=body.photoURL
            )
        except Exception as exc:
            logger.exception("Error syncing user: {}", exc)
            raise HTTPException(status_code=500, detail="Internal Server Error")
        return {"message": "User synced successfully", "uid": uid}

    @app.post("/api/user/history")
    def add_history(
        body: HistoryPayload,
        user: Dict[str, Any] = Depends(current_user),
        services: Services = Depends(get_services),
    ) -> Dict[str, Any]:
        keywords = [body.keywords] if isinstance(body.keywords, str) else (body.keywords or [])
        try:
            services.store.append_history(user["uid"], keywords, body.restaurantNames or [])
        except Exception as exc:
            logger.exception("Error updating history: {}", exc)
            raise HTTPException(status_code=500, detail="Internal Server Error")
        return {"message": "History updated successfully"}

    @app.get("/api/user/history")
    def get_history(
        user: Dict[str, Any] = Depends(current_user),
        services: Services = Depends(get_services),
    ) -> Dict[str, Any]:
        try:
            return services.store.get_history(user["uid"]).to_dict()
        except Exception as exc:
            logger.exception("Error fetching history: {}", exc)
            raise HTTPException(status_code=500, detail="Internal Server Error")

    return app


app = create_app()


def run() -> None:
    cfg = Configuration.from_env()
    logger.info("cfg: {}", cfg.log_summary())
    if not cfg.local_dev:
        logger.info("LOCAL_DEV is off; serve `main:app` from the serverless host instead")
        return

    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=cfg.port)


if __name__ == "__main__":
    run()
