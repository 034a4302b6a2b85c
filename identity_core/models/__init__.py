"""
SQLModel table models for the identity store.

Importing this package registers every table on SQLModel.metadata.
"""

from identity_core.models.audit_log import AuditLogs
from identity_core.models.email_verification_token import EmailVerificationTokens
from identity_core.models.password_history import PasswordHistory
from identity_core.models.password_reset_token import PasswordResetTokens
from identity_core.models.refresh_token import RefreshTokens
from identity_core.models.tenant import Tenants
from identity_core.models.tenant_user import TenantUsers
from identity_core.models.user import Users

__all__ = [
    "AuditLogs",
    "EmailVerificationTokens",
    "PasswordHistory",
    "PasswordResetTokens",
    "RefreshTokens",
    "TenantUsers",
    "Tenants",
    "Users",
]
