"""auth/ -- Authentication and authorization package for Newsdesk.

Layer rule: auth/ imports only stdlib, third-party libraries and core/.
It does NOT import from api/, cms/, or media/.
api/ imports from auth/, not the other way around.
"""
