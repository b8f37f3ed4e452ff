"""
Credentials Package

Issuance of Verified ID credentials and tracking of their outcome.

Modules:
- store: In-memory TTL store of issuance records
- tokens: Client-credentials token acquisition
- contracts: Per-contract payload strategies
- issuance: Attempt sequence against the request service
- callbacks: Request service callback correlation
- catalog: Authorities and contracts listing
- qr: QR code rendering
- routes: /api/credentials endpoints
"""
