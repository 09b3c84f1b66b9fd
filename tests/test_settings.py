from __future__ import annotations

import pytest
from pydantic import ValidationError

from knowledge_engine.config import get_settings, validate_config
from knowledge_engine.config.settings import Settings


def test_retrieval_policy_defaults() -> None:
    settings = Settings(_env_file=None)

    assert settings.rrf_k == 60
    assert settings.graph_route_threshold == 0.55
    assert settings.max_traversal_depth == 3
    assert settings.graph_traversal_depth == 2
    assert settings.hybrid_vector_weight == 0.5
    assert settings.synthesis_max_chunks == 6
    assert settings.kg_store_type == "postgresql"
    assert settings.knowledge_router_enabled is True


def test_database_url_assembled_from_parts() -> None:
    settings = Settings(
        _env_file=None,
        database_url=None,
        postgres_user="u",
        postgres_password="p",
        postgres_host="db",
        postgres_port=5433,
        postgres_db="kb",
    )

    assert settings.database_url == "postgresql://u:p@db:5433/kb"
    assert settings.get_database_url_async() == "postgresql+asyncpg://u:p@db:5433/kb"


def test_values_are_normalized() -> None:
    settings = Settings(
        _env_file=None, environment="AWS", log_level="debug", kg_store_type="Neo4j"
    )

    assert settings.environment == "aws"
    assert settings.log_level == "DEBUG"
    assert settings.kg_store_type == "neo4j"
    assert settings.is_aws()
    assert settings.model_configured()


@pytest.mark.parametrize(
    "overrides",
    [
        {"environment": "staging"},
        {"log_level": "verbose"},
        {"kg_store_type": "sqlite"},
        {"hybrid_vector_weight": 1.2},
        {"graph_route_threshold": -0.1},
        {"default_top_k": 60, "max_top_k": 50},
    ],
)
def test_invalid_values_rejected(overrides: dict) -> None:
    with pytest.raises(ValidationError):
        Settings(_env_file=None, **overrides)


def test_model_configured_locally_needs_both_keys() -> None:
    assert not Settings(
        _env_file=None, aws_access_key_id=None, aws_secret_access_key=None
    ).model_configured()
    assert not Settings(
        _env_file=None, aws_access_key_id="AKIA", aws_secret_access_key=None
    ).model_configured()
    assert Settings(
        _env_file=None, aws_access_key_id="AKIA", aws_secret_access_key="s"
    ).model_configured()


def test_env_overrides_and_cache(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GRAPH_ROUTE_THRESHOLD", "0.7")
    monkeypatch.setenv("CORS_ORIGINS", "http://a.test, http://b.test")

    settings = get_settings()

    assert settings.graph_route_threshold == 0.7
    assert settings.get_cors_origins_list() == ["http://a.test", "http://b.test"]
    assert get_settings() is settings


def test_validate_config_reports_warnings(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ENVIRONMENT", "local")
    monkeypatch.setenv("KNOWLEDGE_ROUTER_ENABLED", "false")
    monkeypatch.delenv("AWS_ACCESS_KEY_ID", raising=False)
    monkeypatch.delenv("AWS_SECRET_ACCESS_KEY", raising=False)

    result = validate_config()

    assert result["status"] == "ok"
    assert result["environment"] == "local"
    assert any("disabled" in w for w in result["warnings"])
    assert result["settings_summary"]["model_configured"] is False


def test_validate_config_rejects_default_password_in_aws(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("ENVIRONMENT", "aws")
    monkeypatch.setenv("POSTGRES_PASSWORD", "workspace")
    monkeypatch.setenv("DEBUG", "false")

    with pytest.raises(ValueError):
        validate_config()
