"""auth/ -- Credentials, tokens, one-time codes and Google identity.

Layer rule: auth/ imports only stdlib, third-party libraries and core/.
It does NOT import from api/ or accounts/.
accounts/ and api/ import from auth/, not the other way around.
"""
