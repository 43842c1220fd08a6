import logging
import os
from functools import lru_cache

logger = logging.getLogger("centermap.env")


@lru_cache(maxsize=1)
def ensure_loaded() -> str | None:
    """Load the secrets env file once, if one exists.

    Priority:
    1) CENTERMAP_ENV_FILE path
    2) /etc/centermap/centermap.env
    3) ops/secrets/centermap.secrets.env (relative to CWD)
    Does not override environment variables already set.
    Returns the path that was loaded, if any.
    """
    candidates = [
        os.getenv("CENTERMAP_ENV_FILE", ""),
        "/etc/centermap/centermap.env",
        os.path.join("ops", "secrets", "centermap.secrets.env"),
    ]
    for p in candidates:
        if p and os.path.isfile(p):
            _load_env_file(p)
            return p
    return None


def _load_env_file(path: str) -> None:
    loaded = 0
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            k, v = line.split("=", 1)
            k = k.strip()
            if k.startswith("export "):
                k = k[len("export "):].strip()
            v = v.strip().strip('"').strip("'")
            if k and k not in os.environ:
                os.environ[k] = v
                loaded += 1
    logger.info("loaded %d variables from %s", loaded, path)
