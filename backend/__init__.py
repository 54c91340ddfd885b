"""Knowledge Universe Backend - FastAPI service around the layout core."""
