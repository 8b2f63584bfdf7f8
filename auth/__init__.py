"""auth/ -- Credential core for authcore: hashing, tokens, stores, flows and gates.

Layer rule: auth/ imports only stdlib + third-party libraries (auth/tokens.py
may reference core.config.Settings for type checking only).
It does NOT import from api/. api/ and main.py import from auth/, not the
other way around.
"""
