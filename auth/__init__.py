"""auth/ -- Credential lifecycle package for CredGate.

Layer rule: auth/ imports only stdlib + third-party libraries (plus fastapi
in auth/dependencies.py). It does NOT import from api/ or core/; collaborators
and configuration values are injected by api/main.py and main.py.
"""
