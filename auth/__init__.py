"""auth/ -- Identity and access-control core for Agora.

Credential Store, Token Service, Session Registry, Authorization Engine and
the Auth Gateway façade that request handlers call.

Layer rule: auth/ imports only stdlib, third-party libraries and core/.
It does NOT import from api/ or community/.
api/ imports from auth/, not the other way around.
"""
