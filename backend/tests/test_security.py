from collections.abc import Iterator
from typing import Annotated

import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

import app.main as main
from app.security import (
	hash_password,
	normalize_user_id,
	verify_api_token,
	verify_password,
)
from app.settings import get_settings


@pytest.fixture(autouse=True)
def reset_settings_cache(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
	for env_name in (
		"ASSET_TRACKER_ALLOWED_HOSTS",
		"ASSET_TRACKER_ALLOWED_ORIGINS",
		"ASSET_TRACKER_API_TOKEN",
		"ASSET_TRACKER_APP_ENV",
		"ASSET_TRACKER_BUSINESS_TZ_OFFSET_HOURS",
		"ASSET_TRACKER_PUBLIC_ORIGIN",
		"ASSET_TRACKER_SESSION_SECRET",
	):
		monkeypatch.delenv(env_name, raising=False)

	get_settings.cache_clear()
	yield
	get_settings.cache_clear()


def _build_client() -> TestClient:
	app = FastAPI()

	@app.get("/protected")
	def protected(_: Annotated[None, Depends(verify_api_token)]) -> dict[str, str]:
		return {"status": "ok"}

	return TestClient(app)


def _configure_production(monkeypatch: pytest.MonkeyPatch) -> None:
	monkeypatch.setenv("ASSET_TRACKER_APP_ENV", "production")
	monkeypatch.setenv("ASSET_TRACKER_PUBLIC_ORIGIN", "https://assets.example.com/")
	monkeypatch.setenv("ASSET_TRACKER_API_TOKEN", "secret-token")
	monkeypatch.setenv("ASSET_TRACKER_SESSION_SECRET", "session-secret")


def test_settings_default_to_local_development() -> None:
	settings = get_settings()

	assert settings.is_production is False
	assert settings.cors_origins() == ["http://localhost:5173", "http://127.0.0.1:5173"]
	assert settings.trusted_hosts() == ["localhost", "127.0.0.1"]
	assert settings.business_tz_offset_hours == 8
	assert settings.max_history_hours == 48
	assert settings.default_history_days == 7
	assert settings.session_secret_value() is not None


def test_settings_lock_down_same_origin_in_production(monkeypatch: pytest.MonkeyPatch) -> None:
	_configure_production(monkeypatch)
	settings = get_settings()

	assert settings.is_production is True
	assert settings.require_api_token is True
	assert settings.cors_origins() == ["https://assets.example.com"]
	assert settings.trusted_hosts() == ["assets.example.com"]
	settings.validate_runtime()


def test_settings_validate_runtime_requires_api_token_in_production(
	monkeypatch: pytest.MonkeyPatch,
) -> None:
	_configure_production(monkeypatch)
	monkeypatch.delenv("ASSET_TRACKER_API_TOKEN")

	with pytest.raises(ValueError, match="ASSET_TRACKER_API_TOKEN"):
		get_settings().validate_runtime()


def test_settings_validate_runtime_requires_session_secret_in_production(
	monkeypatch: pytest.MonkeyPatch,
) -> None:
	_configure_production(monkeypatch)
	monkeypatch.setenv("ASSET_TRACKER_SESSION_SECRET", "   ")

	with pytest.raises(ValueError, match="ASSET_TRACKER_SESSION_SECRET"):
		get_settings().validate_runtime()


def test_settings_validate_runtime_rejects_impossible_business_offset(
	monkeypatch: pytest.MonkeyPatch,
) -> None:
	monkeypatch.setenv("ASSET_TRACKER_BUSINESS_TZ_OFFSET_HOURS", "15")

	with pytest.raises(ValueError, match="BUSINESS_TZ_OFFSET_HOURS"):
		get_settings().validate_runtime()


def test_verify_api_token_allows_missing_token_when_not_configured() -> None:
	client = _build_client()
	response = client.get("/protected")

	assert response.status_code == 200


def test_verify_api_token_accepts_matching_token(monkeypatch: pytest.MonkeyPatch) -> None:
	monkeypatch.setenv("ASSET_TRACKER_API_TOKEN", "secret-token")
	client = _build_client()
	response = client.get("/protected", headers={"X-API-Key": " secret-token "})

	assert response.status_code == 200


def test_verify_api_token_rejects_invalid_token(monkeypatch: pytest.MonkeyPatch) -> None:
	monkeypatch.setenv("ASSET_TRACKER_API_TOKEN", "secret-token")
	client = _build_client()
	response = client.get("/protected", headers={"X-API-Key": "wrong-token"})

	assert response.status_code == 401
	assert response.json() == {"detail": "Invalid API token."}


def test_verify_api_token_rejects_missing_token_when_required(monkeypatch: pytest.MonkeyPatch) -> None:
	monkeypatch.setenv("ASSET_TRACKER_API_TOKEN", "secret-token")
	client = _build_client()
	response = client.get("/protected")

	assert response.status_code == 401
	assert response.json() == {"detail": "Missing API token."}


def test_verify_api_token_rejects_disallowed_origin(monkeypatch: pytest.MonkeyPatch) -> None:
	monkeypatch.setenv("ASSET_TRACKER_API_TOKEN", "secret-token")
	client = _build_client()
	response = client.get(
		"/protected",
		headers={
			"Origin": "https://evil.example.com",
			"X-API-Key": "secret-token",
		},
	)

	assert response.status_code == 403
	assert response.json() == {"detail": "Origin not allowed."}


def test_verify_api_token_allows_same_origin_requests_in_production(
	monkeypatch: pytest.MonkeyPatch,
) -> None:
	_configure_production(monkeypatch)
	client = _build_client()
	response = client.get(
		"/protected",
		headers={
			"Origin": "https://assets.example.com",
			"X-API-Key": "secret-token",
		},
	)

	assert response.status_code == 200


def test_verify_api_token_rejects_production_without_server_token(
	monkeypatch: pytest.MonkeyPatch,
) -> None:
	_configure_production(monkeypatch)
	monkeypatch.delenv("ASSET_TRACKER_API_TOKEN")
	client = _build_client()
	response = client.get("/protected", headers={"Origin": "https://assets.example.com"})

	assert response.status_code == 503
	assert response.json() == {
		"detail": "API token is required by the current server configuration.",
	}


def test_password_hash_round_trip_rejects_wrong_password() -> None:
	digest = hash_password("correct-horse")

	assert digest.startswith("scrypt$")
	assert verify_password("correct-horse", digest) is True
	assert verify_password("wrong-horse", digest) is False
	assert verify_password("correct-horse", "md5$broken") is False


def test_normalize_user_id_lowercases_and_validates() -> None:
	assert normalize_user_id("  Alice_01 ") == "alice_01"

	with pytest.raises(ValueError):
		normalize_user_id("a!")


def test_app_adds_security_headers_to_health_check() -> None:
	client = TestClient(main.app, base_url="http://localhost")
	response = client.get("/api/health")

	assert response.status_code == 200
	assert response.json() == {"status": "ok"}
	assert response.headers["X-Frame-Options"] == "DENY"
	assert response.headers["Cache-Control"] == "no-store"


def test_app_rejects_untrusted_host_header() -> None:
	client = TestClient(main.app, base_url="http://evil.example.com")
	response = client.get("/api/health")

	assert response.status_code == 400
