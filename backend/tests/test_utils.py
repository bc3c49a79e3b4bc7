from shared.config import ServiceConfig
from shared.utils import config, format_variant_id, truncate_text


def test_config_env_loading() -> None:
    # Keys should resolve even when not explicitly configured
    assert config.get("openai_api_key") in (None, "") or isinstance(config.get("openai_api_key"), str)
    assert config.get("video_service") in ("mock", "sora") or isinstance(config.get("video_service"), str)
    assert isinstance(config.get("allowed_origins"), list)
    assert config.get("missing-key", "fallback") == "fallback"


def test_pipeline_values_use_dotted_paths() -> None:
    cfg = ServiceConfig()
    cfg.set_pipeline_config({"worker": {"max_attempts": 5}, "billing": {"upsell_multiplier": 2}})
    assert cfg.max_job_attempts == 5
    assert cfg.upsell_multiplier == 2.0
    assert cfg.get_pipeline_value("worker.missing", "default") == "default"
    # Unset values fall back to the built-in policy
    assert cfg.stuck_threshold_minutes == 20


def test_pipeline_values_can_be_overridden_from_env(monkeypatch) -> None:
    cfg = ServiceConfig()
    cfg.set_pipeline_config({"worker": {"max_jobs_per_run": 10}})
    monkeypatch.setenv("PIPELINE_FLAG_WORKER_MAX_JOBS_PER_RUN", "4")
    monkeypatch.setenv("PIPELINE_FLAG_BILLING_ENFORCE_QUOTED_CHARGE", "true")
    assert cfg.max_jobs_per_run == 4
    assert cfg.enforce_quoted_charge is True


def test_format_variant_id() -> None:
    assert format_variant_id(0) == "V01"
    assert format_variant_id(11) == "V12"


def test_truncate_text() -> None:
    assert truncate_text("short", 10) == "short"
    assert truncate_text("a" * 100, 80) == "a" * 80 + "..."
