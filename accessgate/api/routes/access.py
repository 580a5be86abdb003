"""
Read-only introspection of the access services registered in this process.
"""
from fastapi import APIRouter, HTTPException

from accessgate.access.service import AccessStatus, registered_services


router = APIRouter(prefix="/access", tags=["access"])


@router.get("/documents")
def list_documents() -> list[AccessStatus]:
    return [service.status() for service in registered_services().values()]


@router.get("/{document_id}/status")
def document_status(document_id: str) -> AccessStatus:
    service = registered_services().get(document_id)
    if service is None:
        raise HTTPException(status_code=404, detail="Unknown document")
    return service.status()
