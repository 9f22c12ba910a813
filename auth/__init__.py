"""auth/ -- Credential and session lifecycle core for PrepLog.

Layer rule: auth/ imports only stdlib + third-party libraries.
It does NOT import from api/, core/, or mailer/.
api/ and mailer/ import from auth/, not the other way around.
"""
