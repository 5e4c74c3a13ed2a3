"""auth/ -- Credential issuance and session lifecycle for AuthGate.

Layer rule: auth/ imports from core/ and third-party libraries only
(auth/dependencies.py additionally imports fastapi). It does NOT import from
api/. api/ imports from auth/, not the other way around.
"""
