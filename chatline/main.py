"""
Session lifecycle: everything between "the user ran chatline" and a
ChatSession ready for turns.

  config check -> exclusive lock on the store -> store load -> session

The lock is held for the whole session and released on every exit path.
"""

import logging
from contextlib import contextmanager
from pathlib import Path

from chatline.backends.openai_compat import OpenAICompatibleBackend
from chatline.completion import CompletionClient
from chatline.config import require_api_key, storage_path
from chatline.lock import StoreLock, lock_path_for
from chatline.session import DEFAULT_SYSTEM_PROMPT, DEFAULT_TITLE_PREFIX, ChatSession
from chatline.storage.sqlite_store import SQLiteStore

logger = logging.getLogger(__name__)


def _setup_logging(cfg: dict, console: bool = True):
    log_cfg = cfg.get("logging", {})
    level = getattr(logging, str(log_cfg.get("level", "INFO")).upper(), logging.INFO)
    log_file = log_cfg.get("file")

    handlers: list[logging.Handler] = []
    if console:
        handlers.append(logging.StreamHandler())
    if log_file:
        log_path = Path(log_file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path))
    if not handlers:
        handlers.append(logging.NullHandler())

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
        force=True,
    )


def build_client(cfg: dict, api_key: str = "") -> CompletionClient:
    b_cfg = cfg["backend"]
    backend = OpenAICompatibleBackend(
        name="openai",
        url=b_cfg["url"],
        timeout=b_cfg.get("timeout", 120),
        api_key=api_key,
    )
    return CompletionClient(backend, model=b_cfg["model"])


@contextmanager
def open_store(cfg: dict):
    """Lock the store for this process and yield it. Raises LockTimeout."""
    db_path = storage_path(cfg)
    db_path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
    timeout = float(cfg["storage"].get("lock_timeout", 1.0))

    with StoreLock(lock_path_for(db_path), timeout=timeout):
        yield SQLiteStore(str(db_path))


@contextmanager
def open_session(cfg: dict):
    """
    Yield a loaded ChatSession.
    Raises ConfigurationError before touching the store if the API key is
    missing, and LockTimeout if another process holds the store.
    """
    api_key = require_api_key(cfg)
    s_cfg = cfg.get("session", {})

    with open_store(cfg) as store:
        session = ChatSession(
            store,
            build_client(cfg, api_key),
            system_prompt=s_cfg.get("system_prompt", DEFAULT_SYSTEM_PROMPT),
            title_prefix=s_cfg.get("title_prefix", DEFAULT_TITLE_PREFIX),
        )
        titles = session.load()
        logger.info("Session started with %d conversation(s)", len(titles))
        yield session
