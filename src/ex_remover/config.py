"""Settings loaded from the environment (and a local .env file)."""

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from ex_remover.credits import BONUS_CREDITS, DEFAULT_CREDITS
from ex_remover.provider import DEFAULT_EDIT_MODEL, DEFAULT_TIMEOUT, DEFAULT_VISION_MODEL

logger = logging.getLogger(__name__)

DEFAULT_CREDITS_FILE = Path("~/.ex_remover/credits.json")


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Ignoring invalid {name}={raw!r}, using {default}")
        return default


@dataclass
class Settings:
    api_key: str | None = None
    vision_model: str = DEFAULT_VISION_MODEL
    edit_model: str = DEFAULT_EDIT_MODEL
    timeout: float = DEFAULT_TIMEOUT
    credits_file: Path = DEFAULT_CREDITS_FILE
    default_credits: int = DEFAULT_CREDITS
    bonus_credits: int = BONUS_CREDITS

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()
        timeout = os.environ.get("EX_REMOVER_TIMEOUT")
        try:
            timeout_value = float(timeout) if timeout else DEFAULT_TIMEOUT
        except ValueError:
            logger.warning(f"Ignoring invalid EX_REMOVER_TIMEOUT={timeout!r}")
            timeout_value = DEFAULT_TIMEOUT

        return cls(
            api_key=os.environ.get("OPENAI_API_KEY") or None,
            vision_model=os.environ.get("EX_REMOVER_VISION_MODEL", DEFAULT_VISION_MODEL),
            edit_model=os.environ.get("EX_REMOVER_EDIT_MODEL", DEFAULT_EDIT_MODEL),
            timeout=timeout_value,
            credits_file=Path(
                os.environ.get("EX_REMOVER_CREDITS_FILE", str(DEFAULT_CREDITS_FILE))
            ).expanduser(),
            default_credits=_int_env("EX_REMOVER_DEFAULT_CREDITS", DEFAULT_CREDITS),
            bonus_credits=_int_env("EX_REMOVER_BONUS_CREDITS", BONUS_CREDITS),
        )
