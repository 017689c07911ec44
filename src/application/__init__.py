# Application Layer
# =================
# Use cases and orchestration (no business rules of its own):
# - update_orchestrator.py: check / apply template updates
# - github_connection.py:   repository and token resolution for remote mode
# - redeploy.py:            best-effort redeploy after an update lands
# - builder.py:             wires everything from Settings

from .builder import UpdateServices, build_update_services
from .github_connection import ConnectionStatus, GitHubConnection
from .redeploy import RedeployTrigger
from .update_orchestrator import UpdateOrchestrator
