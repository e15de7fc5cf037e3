"""Tests for error hierarchy."""

from edgeship.errors import (
    BuildError,
    ConfigError,
    DeploymentError,
    EdgeshipError,
    FixError,
    PackagingError,
    ProviderAPIError,
)


def test_hierarchy() -> None:
    assert issubclass(ConfigError, EdgeshipError)
    assert issubclass(BuildError, EdgeshipError)
    assert issubclass(FixError, EdgeshipError)
    assert issubclass(PackagingError, EdgeshipError)
    assert issubclass(DeploymentError, EdgeshipError)
    assert issubclass(ProviderAPIError, DeploymentError)


def test_retryable_default() -> None:
    assert EdgeshipError("test").retryable is False
    assert FixError("test").retryable is False
    assert DeploymentError("test", step="upload_worker").retryable is False


def test_provider_error_retryable_by_status() -> None:
    assert ProviderAPIError("rate limited", status_code=429).retryable is True
    assert ProviderAPIError("upstream", status_code=503).retryable is True
    assert ProviderAPIError("bad request", status_code=400).retryable is False


def test_deployment_error_carries_step() -> None:
    err = ProviderAPIError("boom", step="put_secret", status_code=500)
    assert str(err) == "boom"
    assert err.step == "put_secret"
    assert err.status_code == 500


def test_catch_as_edgeship_error() -> None:
    try:
        raise ProviderAPIError("test", status_code=502)
    except EdgeshipError as exc:
        assert exc.retryable is True
