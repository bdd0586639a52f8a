"""Explicit wiring of config, clients and stores for the HTTP app."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

import firebase_admin
from fastapi import Request
from firebase_admin import credentials, firestore
from loguru import logger

from config import Configuration
from services.ai_search import RestaurantSearcher
from services.auth import Authenticator
from services.gemini import GeminiGenerator
from services.places import PlacesClient
from services.store import UserStore


@dataclass
class Services:
    cfg: Configuration
    authenticator: Authenticator
    store: UserStore
    searcher: RestaurantSearcher

    @classmethod
    def from_config(cls, cfg: Configuration) -> "Services":
        fb_app = init_firebase(cfg)
        db = firestore.client(app=fb_app)
        return cls(
            cfg=cfg,
            authenticator=Authenticator(fb_app),
            store=UserStore(db, collection=cfg.user_collection),
            searcher=RestaurantSearcher(cfg, GeminiGenerator(cfg), PlacesClient(cfg)),
        )


def init_firebase(cfg: Configuration) -> Any:
    if firebase_admin._apps:
        return firebase_admin.get_app()
    options = {"projectId": cfg.firebase_project_id} if cfg.firebase_project_id else None
    if cfg.firebase_credentials:
        cred: Optional[credentials.Base] = credentials.Certificate(cfg.firebase_credentials)
    else:
        cred = None  # application default credentials
    fb_app = firebase_admin.initialize_app(cred, options)
    logger.info("Firebase Admin initialized (project={})", cfg.firebase_project_id or "default")
    return fb_app


def get_services(request: Request) -> Services:
    services: Optional[Services] = getattr(request.app.state, "services", None)
    if services is None:
        cfg = Configuration.from_env()
        logger.info("cfg: {}", cfg.log_summary())
        services = Services.from_config(cfg)
        request.app.state.services = services
    return services
