"""auth/ -- Identity and session-authorization package for Rentally.

Credential verification, federated identity resolution, session tokens,
request authentication and role guards.

Layer rule: auth/ imports only stdlib + third-party libraries.
It does NOT import from api/ or core/ (except under TYPE_CHECKING).
api/ imports from auth/, not the other way around.
"""
