# VozSmart Dashboard - Template Update Synchronizer
# ==================================================
# Keeps a deployed VozSmart dashboard in sync with its GitHub template,
# using Layered Architecture:
#
# ARCHITECTURE LAYERS:
# - Presentation:   FastAPI routes and the update panel (web/)
# - Application:    Check/apply use cases and wiring (application/)
# - Domain:         Protection policy and update records (domain/)
# - Infrastructure: GitHub, Vercel, filesystem, sqlite (infrastructure/)
#
# Backends are swappable behind FileTransport (local disk today, GitHub
# repository for serverless deployments).
