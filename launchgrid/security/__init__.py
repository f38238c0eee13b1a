"""Tenant context, credentials and audit logging."""

from .audit import AuditLogWriter
from .context import ServiceContext, TenantContext
from .credentials import CredentialCipher, ProviderCredentials

__all__ = [
    "AuditLogWriter",
    "CredentialCipher",
    "ProviderCredentials",
    "ServiceContext",
    "TenantContext",
]
