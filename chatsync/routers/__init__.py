"""HTTP routers exposing sync-layer health."""
