"""In-memory cache of environment variable overrides per SpinWick.

``/spinwick create --env`` and ``/spinwick update --env`` store their
overrides here under the environment's RepeatableID; the next create or
update of that environment sends them to the provisioner. The cache lives
only in memory and is lost on restart.
"""

import logging
import threading
from typing import Dict, Optional

from src.spinwick.cloud.models import EnvVarMap


logger = logging.getLogger(__name__)


class EnvVarCache:
    """Thread-safe map of RepeatableID to EnvVarMap."""

    def __init__(self) -> None:
        self._maps: Dict[str, EnvVarMap] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._maps)

    def set(self, repeatable_id: str, env: EnvVarMap) -> None:
        with self._lock:
            self._maps[repeatable_id] = dict(env)
        logger.info(
            "Cached environment variables",
            extra={"repeatable_id": repeatable_id, "keys": list(env)},
        )

    def get(self, repeatable_id: str) -> Optional[EnvVarMap]:
        """Return a copy of the cached map, or None if nothing is cached."""
        with self._lock:
            env = self._maps.get(repeatable_id)
            return dict(env) if env is not None else None

    def pop(self, repeatable_id: str) -> Optional[EnvVarMap]:
        with self._lock:
            return self._maps.pop(repeatable_id, None)
