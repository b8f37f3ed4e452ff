"""
VID Issuing Tool Application Package
====================================

Administrative service that issues Microsoft Entra Verified ID credentials
to directory users.

Subpackages:
    - auth:        Operator sign-in with Microsoft Entra ID (OIDC) and session tokens
    - credentials: Contract catalog, issuance orchestration, callback tracking
    - users:       Directory (Microsoft Graph) user lookup
    - admin:       Statistics, cleanup, troubleshooting and captured logs

Modules:
    - config:    Environment-driven settings
    - errors:    Error taxonomy surfaced to API callers
    - models:    Pydantic request/response and record models
    - logbuffer: In-memory log ring buffer fed by the logging module
    - context:   Shared application context and its dependency
    - main:      Application factory, logging setup and exception handlers
"""
