"""
Service configuration: environment settings plus the YAML pipeline policy.
"""

import json
import os
from typing import Any

import yaml

from dotenv import load_dotenv

BACKEND_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
DEFAULT_PIPELINE_PATH = os.path.join(BACKEND_DIR, "..", "config", "pipeline.yaml")

# Built-in policy, used for any value the pipeline file leaves out
PIPELINE_DEFAULTS: dict[str, dict[str, Any]] = {
    "billing": {
        "upsell_multiplier": 1.5,
        "enforce_quoted_charge": False,
    },
    "worker": {
        "max_attempts": 3,
        "stuck_threshold_minutes": 20,
        "max_jobs_per_run": 10,
        "max_runtime_seconds": 55,
        "sweep_every_runs": 10,
        "video_poll_interval_seconds": 10,
        "video_delayed_after_seconds": 240,
        "video_poll_timeout_seconds": 900,
    },
}


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() == "true"


class ServiceConfig:
    """Flat settings from the environment and dotted-path pipeline values from YAML."""

    def __init__(self) -> None:
        # backend/.env wins over the inherited environment
        load_dotenv(dotenv_path=os.path.join(BACKEND_DIR, ".env"), override=True)
        self.config: dict[str, Any] = {}
        self.pipeline_config: dict[str, Any] = {}
        self.pipeline_config_path = os.getenv("PIPELINE_CONFIG_PATH", DEFAULT_PIPELINE_PATH)
        self.reload()

    def load_from_env(self) -> None:
        self.config = {
            # Database
            "database_url": os.getenv("DATABASE_URL"),
            "db_host": os.getenv("DB_HOST"),
            "db_port": os.getenv("DB_PORT", "5432"),
            "db_user": os.getenv("DB_USER", "postgres"),
            "db_password": os.getenv("DB_PASSWORD", "postgres"),
            "db_name": os.getenv("DB_NAME", "feedr"),
            "db_sslmode": os.getenv("DB_SSLMODE", "prefer"),
            # HTTP surface
            "debug": _env_flag("DEBUG"),
            "allowed_origins": json.loads(os.getenv("ALLOWED_ORIGINS", '["*"]')),
            "secret_key": os.getenv("SECRET_KEY", "supersecret"),
            "cron_secret": os.getenv("CRON_SECRET"),
            "media_root": os.getenv("MEDIA_ROOT", "/app/media"),
            # Providers, by driver name
            "script_service": os.getenv("SCRIPT_SERVICE", "mock"),
            "voice_service": os.getenv("VOICE_SERVICE", "mock"),
            "video_service": os.getenv("VIDEO_SERVICE", "mock"),
            "assembly_service": os.getenv("ASSEMBLY_SERVICE", "mock"),
            "image_service": os.getenv("IMAGE_SERVICE", "mock"),
            "research_service": os.getenv("RESEARCH_SERVICE", "mock"),
            "research_enabled": _env_flag("RESEARCH_ENABLED"),
            "openai_api_key": os.getenv("OPENAI_API_KEY"),
            "kie_api_key": os.getenv("KIE_API_KEY"),
            "kie_base_url": os.getenv("KIE_BASE_URL", "https://api.kie.ai/v1"),
        }

    def get(self, key: str, default: Any = None) -> Any:
        """Setting by key; unset and None values both give the default."""
        value = self.config.get(key)
        return default if value is None else value

    def set(self, key: str, value: Any) -> None:
        self.config[key] = value

    def reload(self) -> None:
        self.load_from_env()
        self.load_pipeline_config()

    def load_pipeline_config(self) -> None:
        """Read the pipeline YAML. A missing file means built-in defaults only."""
        try:
            with open(os.path.abspath(self.pipeline_config_path), "r", encoding="utf-8") as stream:
                self.pipeline_config = yaml.safe_load(stream) or {}
        except FileNotFoundError:
            self.pipeline_config = {}

    def set_pipeline_config(self, pipeline_config: dict[str, Any]) -> None:
        """Replace the loaded pipeline values, e.g. from a test."""
        self.pipeline_config = pipeline_config

    def get_pipeline_value(self, path: str, default: Any = None) -> Any:
        """Look up "section.key"; PIPELINE_FLAG_SECTION_KEY in the environment takes precedence."""
        env_value = os.getenv("PIPELINE_FLAG_" + path.replace(".", "_").upper())
        if env_value is not None:
            return self._coerce_env_value(env_value, default)

        for source in (self.pipeline_config, PIPELINE_DEFAULTS):
            value = self._lookup(source, path)
            if value is not None:
                return value
        return default

    @staticmethod
    def _lookup(source: dict[str, Any], path: str) -> Any:
        node: Any = source
        for part in path.split("."):
            if not isinstance(node, dict) or part not in node:
                return None
            node = node[part]
        return node

    # Policy values read by the billing and worker services

    @property
    def upsell_multiplier(self) -> float:
        return float(self.get_pipeline_value("billing.upsell_multiplier"))

    @property
    def enforce_quoted_charge(self) -> bool:
        return bool(self.get_pipeline_value("billing.enforce_quoted_charge"))

    @property
    def max_job_attempts(self) -> int:
        return int(self.get_pipeline_value("worker.max_attempts"))

    @property
    def stuck_threshold_minutes(self) -> int:
        return int(self.get_pipeline_value("worker.stuck_threshold_minutes"))

    @property
    def max_jobs_per_run(self) -> int:
        return int(self.get_pipeline_value("worker.max_jobs_per_run"))

    @property
    def max_runtime_seconds(self) -> float:
        return float(self.get_pipeline_value("worker.max_runtime_seconds"))

    @property
    def sweep_every_runs(self) -> int:
        return int(self.get_pipeline_value("worker.sweep_every_runs"))

    @property
    def video_poll_interval_seconds(self) -> float:
        return float(self.get_pipeline_value("worker.video_poll_interval_seconds"))

    @property
    def video_delayed_after_seconds(self) -> float:
        return float(self.get_pipeline_value("worker.video_delayed_after_seconds"))

    @property
    def video_poll_timeout_seconds(self) -> float:
        return float(self.get_pipeline_value("worker.video_poll_timeout_seconds"))

    @staticmethod
    def _coerce_env_value(raw: str, default: Any) -> Any:
        lowered = raw.lower()
        if lowered in {"true", "false"}:
            return lowered == "true"
        try:
            return float(raw) if "." in raw else int(raw)
        except ValueError:
            return raw or default


config = ServiceConfig()
