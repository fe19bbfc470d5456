"""auth/ -- Session and token authentication for gatekeeper.

Layer rule: auth/ imports only stdlib, third-party libraries and core/.
auth/dependencies.py is the only module that knows about FastAPI; everything
else works on AuthRequest / ResponseActions and a Database handle.
"""
