"""Backend implementations (REST client, in-process authoritative store)."""

from .base import Backend, new_client_id, new_idempotency_key  # noqa: F401
from .memory import InMemoryBackend  # noqa: F401
from .rest import RestBackend  # noqa: F401
from .session import create_default_session, get_default_session  # noqa: F401
