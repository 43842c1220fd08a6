from .env import env_bool, env_int, env_list
from .env_loader import ensure_loaded
from .jwks_verify import decode_with_jwks

__all__ = [
    "env_bool",
    "env_int",
    "env_list",
    "ensure_loaded",
    "decode_with_jwks",
]
