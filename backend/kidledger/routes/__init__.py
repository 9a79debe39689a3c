"""API routers exposing the ledger engines."""
