"""auth/ -- Session and authorization core for SiteAuth.

Modules, leaf-first: models, errors, capabilities, tokens, validation, gate,
store, sessions, dependencies.

Layer rule: auth/ imports only stdlib + third-party libraries.
It does NOT import from api/ or core/ at runtime (settings are injected).
api/ imports from auth/, not the other way around.
"""
