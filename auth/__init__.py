"""auth/ -- Identity, role resolution, and API key authentication for MissionGuard.

Layer rule: auth/ imports only stdlib, third-party libraries, and core/.
It does NOT import from api/, access/, quota/, ratelimit/, or resources/.
Those packages import from auth/, not the other way around.
"""
