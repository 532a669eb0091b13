"""auth/ -- CLI authorization flow and room tokens for Orbit.

Layer rule: auth/ imports from core/ and third-party libraries. The user
directory is injected into the flow, never imported at module load, except
for the pure repository URL parser used by room tokens.
api/ imports from auth/, not the other way around.
"""
