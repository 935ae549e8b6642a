from agent_directory.store.database import AgentStore
from agent_directory.store.settings import SettingsStore, make_settings_backend

__all__ = ["AgentStore", "SettingsStore", "make_settings_backend"]
