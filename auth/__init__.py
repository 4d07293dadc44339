"""auth/ -- Identity and access layer for teamauth.

Credential checks, token lifecycle, password resets, roles and permissions.

Layer rule: auth/ imports only stdlib, third-party libraries and core/.
It does NOT import from api/. api/ imports from auth/, not the other way around.
"""
