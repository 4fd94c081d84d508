import logging
import os
from pathlib import Path

# load_dotenv() runs before any constant below is read so a local .env file
# can provide the FORMFILL_* settings.
from dotenv import load_dotenv
load_dotenv()

ROOT_DIR = Path(__file__).resolve().parent

LOG_LEVEL: str = os.environ.get("FORMFILL_LOG_LEVEL", "INFO").upper()
FUNCTION_KEY: str = os.environ.get("FORMFILL_FUNCTION_KEY", "")
OVERLAY_FONT: str = os.environ.get("FORMFILL_OVERLAY_FONT", "Courier")
FONTS_DIR = Path(os.environ.get("FORMFILL_FONTS_DIR", str(ROOT_DIR / "fonts")))
DEFAULT_FONT_SIZE: float = float(os.environ.get("FORMFILL_DEFAULT_FONT_SIZE", "10"))
FIELD_SAMPLE_SIZE: int = int(os.environ.get("FORMFILL_FIELD_SAMPLE_SIZE", "10"))
CORS_ORIGINS: list[str] = [
    origin.strip()
    for origin in os.environ.get("FORMFILL_CORS_ORIGINS", "").split(",")
    if origin.strip()
]

_LOG_FORMAT = "[%(levelname)s] %(name)s: %(message)s"


def configure_logging(level_name: str | None = None) -> None:
    """Attach a stream handler to the root logger once."""
    level = getattr(logging, (level_name or LOG_LEVEL).upper(), logging.INFO)
    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_LOG_FORMAT))
        root.addHandler(handler)
    root.setLevel(level)
    # pypdf reports recoverable structure problems as warnings; keep them quiet
    # unless we are debugging.
    logging.getLogger("pypdf").setLevel(level if level <= logging.DEBUG else logging.ERROR)
