"""
fedconsent - FastAPI Application
Exposes consent and consent hub operations over HTTP
"""

from fastapi import FastAPI, HTTPException, Depends, Request, Response
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from typing import List, Optional
import logging
import structlog

from pydantic import BaseModel, Field

from .config import get_config
from .constants import SERVICE_NAME, SERVICE_VERSION
from .consent.manager import ConsentsManager
from .consent.models import Consent, ConsentHub, Facility
from .exceptions import ErrorKind, FedConsentError
from .registry import InMemoryRegistry, load_registry

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()

# Global settings
settings = get_config()
logging.basicConfig(level=settings.log_level.upper(), format="%(message)s")

HTTP_STATUS_BY_KIND = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.INVALID_STATE: 400,
    ErrorKind.CONSISTENCY: 500,
    ErrorKind.INFRASTRUCTURE: 500,
}


class CreateConsentRequest(BaseModel):
    user_id: int
    consent_hub_id: int
    consent_id: Optional[int] = None
    actor: Optional[str] = None


class ChangeConsentStatusRequest(BaseModel):
    status: str = Field(..., description="GRANTED or REVOKED")
    actor: Optional[str] = None


class CreateConsentHubRequest(BaseModel):
    id: int = 0
    name: Optional[str] = None
    enforce_consents: bool = True
    facility_ids: List[int] = Field(default_factory=list)
    actor: Optional[str] = None


class UpdateConsentHubRequest(BaseModel):
    name: Optional[str] = None
    enforce_consents: Optional[bool] = None
    actor: Optional[str] = None


class AddFacilityRequest(BaseModel):
    facility_id: int
    actor: Optional[str] = None


class RemoveFacilityOut(BaseModel):
    consent_hub: Optional[ConsentHub] = None
    consent_hub_deleted: bool


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    logger.info("Starting fedconsent", version=SERVICE_VERSION)

    # Keep a manager provided up front (testing/injection)
    if getattr(app.state, "consents_manager", None) is None:
        registry = load_registry(settings.registry_factory)
        if isinstance(registry, InMemoryRegistry):
            logger.warning("Using empty in-memory directories, set FEDCONSENT_REGISTRY_FACTORY "
                           "to serve real users and facilities")
        app.state.consents_manager = ConsentsManager.from_registry(registry, config=settings)
        logger.info("Consents manager initialized", database_url=settings.database_url,
                    registry_factory=settings.registry_factory)

    yield

    logger.info("Shutting down fedconsent")
    app.state.consents_manager.store.dispose()


# Create FastAPI app
app = FastAPI(
    title="fedconsent",
    description="Consents and consent hubs for federated identity management",
    version=SERVICE_VERSION,
    lifespan=lifespan
)


def get_consents_manager(request: Request) -> ConsentsManager:
    manager = getattr(request.app.state, "consents_manager", None)
    if manager is None:
        raise HTTPException(status_code=503, detail="Consents manager not available")
    return manager


@app.exception_handler(FedConsentError)
async def handle_fedconsent_error(request: Request, exc: FedConsentError):
    if exc.expected:
        logger.warning("Request rejected", path=request.url.path, error=exc.error_code)
    else:
        logger.error("Request failed", path=request.url.path, error=exc.error_code,
                     message=exc.message)
    return JSONResponse(status_code=HTTP_STATUS_BY_KIND[exc.kind], content={"detail": exc.to_dict()})


@app.get("/health")
def health_check(request: Request):
    """Health check endpoint"""
    return {
        "status": "healthy",
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "components": {
            "consents_manager": getattr(request.app.state, "consents_manager", None) is not None,
        },
    }


# =============================================================================
# CONSENTS
# =============================================================================

@app.get("/consents", response_model=List[Consent])
def get_all_consents(manager: ConsentsManager = Depends(get_consents_manager)):
    return manager.consents.get_all_consents()


@app.post("/consents", response_model=Consent, status_code=201)
def create_consent(payload: CreateConsentRequest,
                   manager: ConsentsManager = Depends(get_consents_manager)):
    """Create an UNSIGNED consent, replacing the previous UNSIGNED one"""
    return manager.consents.create_consent(
        payload.user_id, payload.consent_hub_id, consent_id=payload.consent_id, actor=payload.actor
    )


@app.get("/consents/{consent_id}", response_model=Consent)
def get_consent(consent_id: int, manager: ConsentsManager = Depends(get_consents_manager)):
    return manager.consents.get_consent_by_id(consent_id)


@app.delete("/consents/{consent_id}", status_code=204)
def delete_consent(consent_id: int, manager: ConsentsManager = Depends(get_consents_manager)):
    manager.consents.delete_consent(consent_id)
    return Response(status_code=204)


@app.post("/consents/{consent_id}/status", response_model=Consent)
def change_consent_status(consent_id: int, payload: ChangeConsentStatusRequest,
                          manager: ConsentsManager = Depends(get_consents_manager)):
    return manager.consents.change_consent_status(consent_id, payload.status, actor=payload.actor)


@app.get("/users/{user_id}/consents", response_model=List[Consent])
def get_consents_for_user(user_id: int, status: Optional[str] = None,
                          manager: ConsentsManager = Depends(get_consents_manager)):
    return manager.consents.get_consents_for_user(user_id, status)


@app.get("/users/{user_id}/consent-hubs/{consent_hub_id}/consents", response_model=List[Consent])
def get_consents_for_user_and_consent_hub(user_id: int, consent_hub_id: int,
                                          status: Optional[str] = None,
                                          manager: ConsentsManager = Depends(get_consents_manager)):
    return manager.consents.get_consents_for_user_and_consent_hub(user_id, consent_hub_id, status)


# =============================================================================
# CONSENT HUBS
# =============================================================================

@app.get("/consent-hubs", response_model=List[ConsentHub])
def get_all_consent_hubs(manager: ConsentsManager = Depends(get_consents_manager)):
    return manager.hubs.get_all_consent_hubs()


@app.post("/consent-hubs", response_model=ConsentHub, status_code=201)
def create_consent_hub(payload: CreateConsentHubRequest,
                       manager: ConsentsManager = Depends(get_consents_manager)):
    consent_hub = ConsentHub(
        id=payload.id,
        name=payload.name,
        enforce_consents=payload.enforce_consents,
        facilities=[Facility(id=f, name="") for f in payload.facility_ids],
    )
    return manager.hubs.create_consent_hub(consent_hub, actor=payload.actor)


@app.get("/consent-hubs/by-name/{name}", response_model=ConsentHub)
def get_consent_hub_by_name(name: str, manager: ConsentsManager = Depends(get_consents_manager)):
    return manager.hubs.get_consent_hub_by_name(name)


@app.get("/consent-hubs/{consent_hub_id}", response_model=ConsentHub)
def get_consent_hub(consent_hub_id: int, manager: ConsentsManager = Depends(get_consents_manager)):
    return manager.hubs.get_consent_hub_by_id(consent_hub_id)


@app.put("/consent-hubs/{consent_hub_id}", response_model=ConsentHub)
def update_consent_hub(consent_hub_id: int, payload: UpdateConsentHubRequest,
                       manager: ConsentsManager = Depends(get_consents_manager)):
    return manager.hubs.update_consent_hub(
        consent_hub_id, name=payload.name, enforce_consents=payload.enforce_consents,
        actor=payload.actor,
    )


@app.delete("/consent-hubs/{consent_hub_id}", status_code=204)
def delete_consent_hub(consent_hub_id: int, manager: ConsentsManager = Depends(get_consents_manager)):
    manager.hubs.delete_consent_hub(consent_hub_id)
    return Response(status_code=204)


@app.get("/consent-hubs/{consent_hub_id}/consents", response_model=List[Consent])
def get_consents_for_consent_hub(consent_hub_id: int, status: Optional[str] = None,
                                 manager: ConsentsManager = Depends(get_consents_manager)):
    return manager.consents.get_consents_for_consent_hub(consent_hub_id, status)


@app.post("/consent-hubs/{consent_hub_id}/facilities", response_model=ConsentHub)
def add_facility(consent_hub_id: int, payload: AddFacilityRequest,
                 manager: ConsentsManager = Depends(get_consents_manager)):
    return manager.hubs.add_facility(consent_hub_id, payload.facility_id, actor=payload.actor)


@app.delete("/consent-hubs/{consent_hub_id}/facilities/{facility_id}",
            response_model=RemoveFacilityOut)
def remove_facility(consent_hub_id: int, facility_id: int,
                    manager: ConsentsManager = Depends(get_consents_manager)):
    consent_hub = manager.hubs.remove_facility(consent_hub_id, facility_id)
    return RemoveFacilityOut(consent_hub=consent_hub, consent_hub_deleted=consent_hub is None)


# =============================================================================
# FACILITIES
# =============================================================================

@app.get("/facilities/{facility_id}/consent-hub", response_model=ConsentHub)
def get_consent_hub_by_facility(facility_id: int,
                                manager: ConsentsManager = Depends(get_consents_manager)):
    return manager.hubs.get_consent_hub_by_facility(facility_id)


@app.post("/facilities/{facility_id}/registered", response_model=ConsentHub, status_code=201)
def facility_registered(facility_id: int, manager: ConsentsManager = Depends(get_consents_manager)):
    """Hook for the facility directory: a facility requiring consents was created"""
    return manager.facility_registered(facility_id)


@app.post("/facilities/{facility_id}/deleted", response_model=RemoveFacilityOut)
def facility_deleted(facility_id: int, manager: ConsentsManager = Depends(get_consents_manager)):
    """Hook for the facility directory: a facility was deleted"""
    consent_hub = manager.facility_deleted(facility_id)
    return RemoveFacilityOut(consent_hub=consent_hub, consent_hub_deleted=consent_hub is None)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
