"""
Authentication Package

Operator sign-in with Microsoft Entra ID (OpenID Connect) and the session
that guards the /api routes.

Modules:
- routes: /auth/login, /auth/callback, /auth/logout, /auth/status
- utils: JWKS caching and ID token verification
- session: Session JWT creation/validation and the require_operator dependency

The authentication flow:
1. Browser starts sign-in via /auth/login (state, nonce and PKCE verifier
   kept in the signed session cookie)
2. Operator authenticates with Entra ID
3. /auth/callback exchanges the code, verifies the ID token and checks the
   operator's domain
4. A session JWT is set as an HttpOnly cookie for subsequent API requests
"""
