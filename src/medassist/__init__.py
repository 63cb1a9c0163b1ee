# MedAssist chat package init
import logging
import os


_LOG_FORMAT = "[MEDASSIST][%(levelname)s] %(name)s: %(message)s"


def _level(env_key: str, default: int) -> int:
    name = (os.getenv(env_key) or "").strip().upper()
    return getattr(logging, name, default) if name else default


def _configure_logging() -> None:
    root = logging.getLogger("medassist")
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_LOG_FORMAT))
        root.addHandler(handler)
    root.setLevel(_level("MEDASSIST_LOG_LEVEL", logging.INFO))

    # Provider request/response chatter is tuned separately
    logging.getLogger("medassist.llm").setLevel(_level("MEDASSIST_LLM_LOG_LEVEL", root.level))


_configure_logging()
