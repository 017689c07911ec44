from .database import Database, UpdateLock, User, init_database
from .local_state import LocalStateStore, STATE_FILE_NAME, parse_state, serialize_state
from .settings_cache import SettingsCache
