"""
Tests for coordination configuration: timeout policy, settle policy, loop config.
"""

import pytest

from webpilot.coordination.config import LoopConfig, RelayConfig, SettleConfig, TimeoutPolicy
from webpilot.environment.action_executor import ExecutorConfig


class TestTimeoutPolicy:

    def test_defaults(self):
        policy = TimeoutPolicy()
        assert policy.timeout_for("execute_action") == 30.0
        assert policy.timeout_for("run_task") == 600.0
        assert policy.timeout_for("ping") == policy.default

    def test_wildcard(self):
        assert TimeoutPolicy().timeout_for("capability:microphone") == 15.0

    def test_exact_match_beats_wildcard(self):
        policy = TimeoutPolicy(overrides={"capability:*": 15.0, "capability:camera": 40.0})
        assert policy.timeout_for("capability:camera") == 40.0
        assert policy.timeout_for("capability:mic") == 15.0

    def test_longest_wildcard_wins(self):
        policy = TimeoutPolicy(overrides={"a*": 1.0, "ab*": 2.0})
        assert policy.timeout_for("abc") == 2.0
        assert policy.timeout_for("ax") == 1.0

    @pytest.mark.parametrize("kwargs", [
        {"default": 0},
        {"overrides": {"ping": -1.0}},
    ])
    def test_rejects_non_positive(self, kwargs):
        with pytest.raises(ValueError):
            TimeoutPolicy(**kwargs)

    def test_relay_config_holds_one_policy(self):
        assert isinstance(RelayConfig().timeout_policy, TimeoutPolicy)

    def test_action_timeout_covers_longest_action(self):
        # A timed-out action must not still be running when the next one is sent
        assert TimeoutPolicy().timeout_for("execute_action") > ExecutorConfig().longest_action()

    def test_longest_action_follows_navigation_settings(self):
        config = ExecutorConfig(settle=SettleConfig(navigation=4.0), navigation_timeout=40.0, overhead=1.0)
        assert config.longest_action() == 45.0


class TestSettleConfig:

    def test_delay_for(self):
        settle = SettleConfig(navigation=2.0, default=0.5)
        assert settle.delay_for("navigation") == 2.0
        assert settle.delay_for("default") == 0.5
        assert settle.delay_for("none") == 0.0

    def test_rejects_negative(self):
        with pytest.raises(ValueError):
            SettleConfig(navigation=-1)


class TestLoopConfig:

    def test_defaults(self):
        config = LoopConfig()
        assert config.max_turns == 20
        assert config.full_context_turns == 2

    def test_validation(self):
        with pytest.raises(ValueError):
            LoopConfig(max_turns=0)
        with pytest.raises(ValueError):
            LoopConfig(full_context_turns=-1)

    def test_screenshot_default_follows_backend(self):
        config = LoopConfig()
        assert config.wants_screenshot("coordinate") is True
        assert config.wants_screenshot("dom") is False
        assert LoopConfig(attach_screenshot=True).wants_screenshot("dom") is True
