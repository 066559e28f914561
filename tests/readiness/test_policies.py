"""Tests for retry policies, defaults and config overrides."""

import pytest

from nbdeploy.readiness import DEFAULT_POLICIES, RetryPolicy, resolve_policies
from nbdeploy.readiness.policies import SERVER_BOOT, SSH_READY, STAGE_NAMES, TLS_CERT


def test_defaults_cover_every_stage():
    assert set(DEFAULT_POLICIES) == set(STAGE_NAMES)


def test_server_boot_defaults():
    policy = DEFAULT_POLICIES[SERVER_BOOT]
    assert policy.max_attempts == 60
    assert policy.interval == 5
    assert policy.initial_delay == 30


def test_tls_defaults():
    policy = DEFAULT_POLICIES[TLS_CERT]
    assert policy.max_attempts == 30
    assert policy.interval == 30


def test_attempt_timeout_below_total_budget():
    for policy in DEFAULT_POLICIES.values():
        assert policy.attempt_timeout < policy.total_timeout


@pytest.mark.parametrize(
    "kwargs",
    [
        {"max_attempts": 0, "interval": 1, "total_timeout": 10},
        {"max_attempts": 1, "interval": -1, "total_timeout": 10},
        {"max_attempts": 1, "interval": 1, "total_timeout": 0},
        {"max_attempts": 1, "interval": 1, "total_timeout": 10, "initial_delay": -5},
    ],
)
def test_invalid_policy_rejected(kwargs):
    with pytest.raises(ValueError):
        RetryPolicy(**kwargs)


def test_from_dict_overrides_base():
    base = DEFAULT_POLICIES[SSH_READY]
    policy = RetryPolicy.from_dict({"max_attempts": "10", "interval": 2}, base=base)

    assert policy.max_attempts == 10
    assert policy.interval == 2.0
    assert policy.total_timeout == base.total_timeout


def test_from_dict_rejects_unknown_field():
    with pytest.raises(ValueError, match="retries"):
        RetryPolicy.from_dict({"retries": 3})


def test_resolve_policies_merges_config():
    policies = resolve_policies({"readiness": {"tls-cert": {"interval": 15}}})

    assert policies[TLS_CERT].interval == 15
    assert policies[TLS_CERT].max_attempts == DEFAULT_POLICIES[TLS_CERT].max_attempts
    assert policies[SERVER_BOOT] == DEFAULT_POLICIES[SERVER_BOOT]


def test_resolve_policies_without_config():
    assert resolve_policies(None) == DEFAULT_POLICIES
    assert resolve_policies({}) == DEFAULT_POLICIES


def test_resolve_policies_unknown_stage():
    with pytest.raises(ValueError, match="Unknown readiness stage"):
        resolve_policies({"readiness": {"tls": {"interval": 1}}})


def test_describe():
    text = RetryPolicy(max_attempts=3, interval=2.5, total_timeout=10).describe()
    assert "3 attempts every 2.5s" in text


@pytest.mark.parametrize("values", [5, "fast", [1, 2]])
def test_resolve_policies_rejects_non_mapping(values):
    with pytest.raises(ValueError, match="tls-cert"):
        resolve_policies({"readiness": {"tls-cert": values}})


def test_from_dict_rejects_non_numeric_value():
    with pytest.raises(ValueError, match="Invalid retry policy value"):
        RetryPolicy.from_dict({"interval": [1]}, base=DEFAULT_POLICIES[SSH_READY])
