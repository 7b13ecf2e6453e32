import logging
import os
import sys


class BridgeConfig:
    def __init__(self, **overrides):
        data_dir = overrides.pop("data_dir", None) or _default_data_dir()
        self.data_dir = data_dir
        self.api_id = _env_int("API_ID")
        self.api_hash = _env_value("API_HASH")
        self.bot_token = _env_value("BOT_TOKEN")
        self.group_id = _env_int("GROUP_ID")
        self.session_name = os.getenv("SESSION_NAME", os.path.join(data_dir, "bridge"))
        self.db_path = os.getenv("DB_PATH", os.path.join(data_dir, "bridge.db"))
        self.tmp_dir = os.getenv("TMP_DIR", os.path.join(data_dir, "tmp"))
        self.create_topics = _env_bool("CREATE_TOPICS", True)
        self.forward_media = _env_bool("FORWARD_MEDIA", True)
        self.use_reactions = _env_bool("USE_REACTIONS", True)
        self.send_confirmation = _env_bool("SEND_CONFIRMATION", True)
        self.anti_call = _env_bool("ANTI_CALL", False)
        self.ffmpeg_binary = os.getenv("FFMPEG_BINARY", "ffmpeg")
        self.transcode_timeout = _env_int("TRANSCODE_TIMEOUT") or 60
        self.reply_cache_size = _env_int("REPLY_CACHE_SIZE") or 5000
        self.log_level = os.getenv("LOG_LEVEL", "INFO")
        for key, value in overrides.items():
            if not hasattr(self, key):
                raise TypeError(f"Unknown config option: {key}")
            setattr(self, key, value)

    def require_credentials(self):
        missing = [
            name
            for name, value in (
                ("API_ID", self.api_id),
                ("API_HASH", self.api_hash),
                ("BOT_TOKEN", self.bot_token),
                ("GROUP_ID", self.group_id),
            )
            if not value
        ]
        if missing:
            raise SystemExit(f"Missing required settings: {', '.join(missing)}")


def _env_value(name):
    value = os.getenv(name)
    if value:
        return value
    return None


def _env_int(name):
    value = _env_value(name)
    if not value:
        return None
    try:
        return int(value)
    except ValueError as exc:
        raise SystemExit(f"Env var {name} must be an integer") from exc


def _env_bool(name, default=None):
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _default_data_dir():
    env_dir = os.getenv("DATA_DIR")
    if env_dir:
        os.makedirs(env_dir, exist_ok=True)
        return env_dir
    if os.path.isdir("/data"):
        return "/data"
    base_dir = os.path.dirname(
        sys.executable if getattr(sys, "frozen", False) else os.path.abspath(__file__)
    )
    data_dir = os.path.join(base_dir, "data")
    try:
        os.makedirs(data_dir, exist_ok=True)
        return data_dir
    except OSError:
        return os.getcwd()


def load_dotenv(path=".env"):
    if not os.path.isfile(path):
        return
    try:
        with open(path, "r", encoding="utf-8") as handle:
            for line in handle:
                line = line.strip()
                if not line or line.startswith("#") or "=" not in line:
                    continue
                key, value = line.split("=", 1)
                key = key.strip()
                value = value.strip().strip("\"'")
                if key and key not in os.environ:
                    os.environ[key] = value
    except OSError as exc:
        logging.warning("Failed to read %s: %s", path, exc)
