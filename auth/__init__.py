"""auth/ -- Identity and session package: password hashing, bearer tokens,
refresh-token sessions, and the session service that composes them.

Layer rule: auth/ imports only stdlib + third-party libraries.
It does NOT import from api/ or core/.
api/ and main.py import from auth/, not the other way around.
"""
