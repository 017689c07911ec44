# Web layer: FastAPI dashboard and update API
