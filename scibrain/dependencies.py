"""FastAPI dependency factories."""

from functools import lru_cache
from threading import Lock

from fastapi import Depends

from scibrain.config import Settings
from scibrain.services.auth_service import AuthService
from scibrain.services.generation import StudyGenerator, get_generator as _get_generator
from scibrain.storage import Storage, create_backend

# Process-wide Storage cache (keyed by settings identity for override support)
_storage: Storage | None = None
_storage_settings_id: object | None = None
_storage_lock = Lock()


@lru_cache()
def get_settings() -> Settings:
    """Singleton Settings -- override via app.dependency_overrides in tests."""
    return Settings()


def build_storage(settings: Settings) -> Storage:
    return Storage(
        create_backend(settings),
        auth=AuthService(session_ttl_hours=settings.session_ttl_hours),
        list_limit=settings.reviewer_list_limit,
    )


def get_storage(settings: Settings = Depends(get_settings)) -> Storage:
    """Process-wide Storage; the backend is chosen once, when it is built."""
    global _storage, _storage_settings_id
    # Runs in the threadpool; concurrent first requests must share one instance
    with _storage_lock:
        # Recreate if settings were overridden (e.g. in tests)
        if _storage is None or _storage_settings_id is not settings:
            _storage = build_storage(settings)
            _storage_settings_id = settings
        return _storage


def current_storage() -> Storage | None:
    return _storage


def reset_storage() -> None:
    """Forget the cached Storage (for tests). Does not close connections."""
    global _storage, _storage_settings_id
    with _storage_lock:
        _storage = None
        _storage_settings_id = None


def get_generator(settings: Settings = Depends(get_settings)) -> StudyGenerator:
    return _get_generator(settings)
