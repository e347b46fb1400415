"""HTTP routers exposing the pipeline."""
