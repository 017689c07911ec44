# Infrastructure Layer
# ====================
# Contains all external service integrations:
# - github/: GitHub REST client and template (manifest) downloads
# - vercel/: Vercel API for repository lookup, redeploys and env vars
# - transport/: filesystem and GitHub file backends for updates
# - persistence/: sqlite store, settings cache, vozsmart.config.json
# - config/: Environment and settings management
#
# This layer can be replaced entirely without affecting domain/application layers.
