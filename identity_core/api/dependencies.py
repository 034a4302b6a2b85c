"""
FastAPI dependencies resolving identity components from application state.
"""

from typing import Annotated

from fastapi import Depends, Request

from identity_core.core.container import IdentityServices
from identity_core.services.credential_verifier import CredentialVerifier


def get_services(request: Request) -> IdentityServices:
    services: IdentityServices = request.app.state.services
    return services


def get_verifier(
    services: Annotated[IdentityServices, Depends(get_services)],
) -> CredentialVerifier:
    return services.verifier


Verifier = Annotated[CredentialVerifier, Depends(get_verifier)]
