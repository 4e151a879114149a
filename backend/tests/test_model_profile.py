"""Tests for model profiles and the catalog."""

import pytest

from app.services.generation.model_profile import (
    ModelCatalog,
    ModelFamily,
    ReasoningStyle,
    UnknownModelError,
    resolve_profile,
)


class TestResolveProfile:
    def test_gemini_3_uses_thinking_level(self):
        profile = resolve_profile("gemini-3-flash-preview")
        assert profile.family is ModelFamily.GEMINI_3
        options = profile.request_options("low")
        config = options["extra_body"]["extra_body"]["google"]["thinking_config"]
        assert config == {"thinking_level": "low", "include_thoughts": True}
        assert "reasoning_effort" not in options

    @pytest.mark.parametrize("effort, budget", [("low", 2048), ("medium", 8192), ("high", 24576)])
    def test_gemini_2_budget(self, effort, budget):
        options = resolve_profile("google/gemini-2.5-flash").request_options(effort)
        assert options["extra_body"]["extra_body"]["google"]["thinking_config"]["thinking_budget"] == budget

    def test_image_model_has_no_tools_or_thinking(self):
        profile = resolve_profile("gemini-2.5-flash-image")
        assert profile.image_output
        assert not profile.supports_tools
        assert profile.reasoning is ReasoningStyle.NONE
        assert profile.request_options("high") == {"extra_body": {"modalities": ["image", "text"]}}

    def test_openai_reasoning_effort(self):
        assert resolve_profile("o3-mini").request_options("high") == {"reasoning_effort": "high"}
        assert resolve_profile("gpt-4o").request_options("high") == {}

    def test_unknown_effort_falls_back_to_medium(self):
        assert resolve_profile("o4-mini").request_options("extreme") == {"reasoning_effort": "medium"}


class TestModelCatalog:
    def test_default_model(self):
        catalog = ModelCatalog(["gemini-2.5-flash"], "gemini-3-flash-preview")
        assert catalog.get(None).model_id == "gemini-3-flash-preview"
        assert {p.model_id for p in catalog.profiles()} == {"gemini-2.5-flash", "gemini-3-flash-preview"}

    def test_unknown_model(self):
        with pytest.raises(UnknownModelError):
            ModelCatalog(["gemini-2.5-flash"]).get("claude-x")

    def test_from_settings(self, test_settings):
        catalog = ModelCatalog.from_settings(test_settings)
        assert catalog.default_model == test_settings.DEFAULT_MODEL
        assert catalog.get("gemini-2.5-flash-image").image_output
