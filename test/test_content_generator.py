"""
Tests for campaign content generation and its deterministic fallback.
"""

import json
from datetime import date

import pytest

from rivvi.ai.generator import (
    FALLBACK_SUMMARY,
    CampaignContentGenerator,
    extract_variables,
    incorporate_user_input,
    restore_missing_variables,
    simple_run_name,
)
from rivvi.ai.models import CampaignContext, LLMTimeoutError, MessageRole
from rivvi.ai.prompts import build_system_prompt, build_user_prompt
from rivvi.shared.exceptions import BadRequestError

from conftest import FakeGateway

BASE_PROMPT = (
    "You are calling {{first_name}} from {{organization_name}}. "
    "Confirm the appointment on {{appointment_date}}."
)
BASE_VOICEMAIL = "Hi {{first_name}}, please call us back."
USER_INPUT = "Please sound warmer and mention parking."


# =============================================================================
# Helpers
# =============================================================================


class TestVariables:
    def test_extract_in_order_without_duplicates(self) -> None:
        assert extract_variables("{{ a }} then {{b}} and {{a}}") == ["a", "b"]

    def test_restore_after_first_sentence(self) -> None:
        restored = restore_missing_variables("Hi {{first_name}}. Be warm and friendly.", BASE_PROMPT)

        assert restored == "Hi {{first_name}}. {{organization_name}} {{appointment_date}} Be warm and friendly."

    def test_restore_appends_without_sentence_break(self) -> None:
        assert restore_missing_variables("Hello there", "Hi {{first_name}}.") == "Hello there {{first_name}}"

    def test_nothing_missing(self) -> None:
        assert restore_missing_variables(BASE_PROMPT, BASE_PROMPT) == BASE_PROMPT


class TestFallbackHelpers:
    def test_incorporate_user_input(self) -> None:
        assert incorporate_user_input(BASE_PROMPT, USER_INPUT) == (
            "You are calling {{first_name}} from {{organization_name}}. "
            "Note: Please sound warmer and mention parking. "
            "Confirm the appointment on {{appointment_date}}."
        )

    def test_simple_run_name(self) -> None:
        today = date(2026, 10, 18)

        assert simple_run_name("Reminders", "make it friendly please", today) == "Reminders - make it friendly (Oct 18)"
        assert simple_run_name("Reminders", None, today) == "Reminders (Oct 18)"
        assert simple_run_name(None, None, today) == "New Run (Oct 18)"
        assert len(simple_run_name("A" * 60, "long input here", today)) == 50


class TestPrompts:
    def test_system_prompt_keeps_variable_braces(self) -> None:
        prompt = build_system_prompt()

        assert "{{variable_name}}" in prompt
        assert "at most 50 characters" in prompt

    def test_user_prompt_sections(self) -> None:
        prompt = build_user_prompt(BASE_PROMPT, "", USER_INPUT, CampaignContext(name="Reminders"))

        assert "No base voicemail message provided." in prompt
        assert "Name: Reminders" in prompt
        assert "Description: Not specified" in prompt
        assert USER_INPUT in prompt


# =============================================================================
# Generator
# =============================================================================


class TestCampaignContentGenerator:
    @pytest.mark.asyncio
    async def test_llm_content_is_used(self) -> None:
        gateway = FakeGateway(
            json.dumps(
                {
                    "new_prompt": "Hi {{first_name}}. Warmly confirm the visit on {{appointment_date}}.",
                    "new_voicemail_message": "Hi {{first_name}}, we would love to hear from you.",
                    "suggested_run_name": "Warm reminders",
                    "summary": "Softer tone.",
                }
            )
        )
        generator = CampaignContentGenerator(gateway)

        content = await generator.generate_enhanced_campaign_content(BASE_PROMPT, BASE_VOICEMAIL, USER_INPUT)

        assert content.ai_generated is True
        assert "{{organization_name}}" in content.new_prompt
        assert content.new_voicemail_message == "Hi {{first_name}}, we would love to hear from you."
        assert content.suggested_run_name == "Warm reminders"
        assert content.summary == "Softer tone."

        request = gateway.requests[0]
        assert request.json_response is True
        assert request.messages[0].role == MessageRole.SYSTEM
        assert BASE_PROMPT in request.messages[1].content

    @pytest.mark.asyncio
    async def test_camel_case_keys_and_defaults(self) -> None:
        gateway = FakeGateway(json.dumps({"newPrompt": BASE_PROMPT + " Be brief.", "newVoicemailMessage": " "}))
        generator = CampaignContentGenerator(gateway)

        content = await generator.generate_enhanced_campaign_content(
            BASE_PROMPT, BASE_VOICEMAIL, USER_INPUT, CampaignContext(name="Reminders")
        )

        assert content.new_prompt.endswith("Be brief.")
        assert content.new_voicemail_message == BASE_VOICEMAIL
        assert content.suggested_run_name.startswith("Reminders - Please sound warmer")

    @pytest.mark.asyncio
    async def test_llm_error_falls_back(self) -> None:
        generator = CampaignContentGenerator(FakeGateway(error=LLMTimeoutError("LLM request timed out")))

        content = await generator.generate_enhanced_campaign_content(BASE_PROMPT, BASE_VOICEMAIL, USER_INPUT)

        assert content.ai_generated is False
        assert content.summary == FALLBACK_SUMMARY
        assert content.new_prompt == incorporate_user_input(BASE_PROMPT, USER_INPUT)
        assert content.new_voicemail_message == BASE_VOICEMAIL

    @pytest.mark.asyncio
    async def test_unparseable_response_falls_back(self) -> None:
        generator = CampaignContentGenerator(FakeGateway("Sure! Here is your prompt."))

        content = await generator.generate_enhanced_campaign_content(BASE_PROMPT, "", USER_INPUT)

        assert content.ai_generated is False
        assert content.new_voicemail_message == ""

    @pytest.mark.asyncio
    async def test_response_without_prompt_falls_back(self) -> None:
        generator = CampaignContentGenerator(FakeGateway(json.dumps({"summary": "nothing"})))

        content = await generator.generate_enhanced_campaign_content(BASE_PROMPT, "", USER_INPUT)

        assert content.ai_generated is False

    @pytest.mark.asyncio
    async def test_short_prompt_rejected(self) -> None:
        generator = CampaignContentGenerator(FakeGateway())

        with pytest.raises(BadRequestError, match="Base prompt"):
            await generator.generate_enhanced_campaign_content("Hi", "", USER_INPUT)

    @pytest.mark.asyncio
    async def test_short_input_rejected(self) -> None:
        gateway = FakeGateway()
        generator = CampaignContentGenerator(gateway)

        with pytest.raises(BadRequestError, match="Natural language input"):
            await generator.generate_enhanced_campaign_content(BASE_PROMPT, "", "hey")

        assert gateway.requests == []
