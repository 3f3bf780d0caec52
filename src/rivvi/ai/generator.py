"""
Campaign content generation: enhances a campaign prompt and voicemail message
from a natural-language request.

LLM failures never reach the caller; a deterministic enhancement is returned
instead and flagged with ``ai_generated=False``.
"""

import json
import re
from datetime import date

from rivvi.ai.models import (
    CampaignContext,
    ChatMessage,
    ChatRequest,
    EnhancedCampaignContent,
    LLMError,
    MessageRole,
)
from rivvi.ai.openai_adapter import LLMGateway
from rivvi.ai.prompts import MAX_RUN_NAME_LENGTH, build_system_prompt, build_user_prompt
from rivvi.shared.exceptions import BadRequestError
from rivvi.shared.logging import get_logger

logger = get_logger(__name__)

MIN_PROMPT_LENGTH = 10
MIN_INPUT_LENGTH = 5
FALLBACK_SUMMARY = "Failed to generate AI content. Applied basic enhancements only."

_VARIABLE_PATTERN = re.compile(r"\{\{([^}]+)\}\}")
_SENTENCE_END = re.compile(r"[.!?]\s")


def extract_variables(text: str) -> list[str]:
    """Return ``{{variable}}`` names in order of appearance, without duplicates."""
    return list(dict.fromkeys(m.strip() for m in _VARIABLE_PATTERN.findall(text or "")))


def restore_missing_variables(new_prompt: str, base_prompt: str) -> str:
    """Put back every variable of ``base_prompt`` that ``new_prompt`` lost."""
    present = set(extract_variables(new_prompt))
    missing = [v for v in extract_variables(base_prompt) if v not in present]
    if not missing:
        return new_prompt

    logger.warning("Generated prompt dropped variables", extra={"missing_variables": missing})
    placeholders = " ".join(f"{{{{{name}}}}}" for name in missing)
    match = _SENTENCE_END.search(new_prompt)
    if match is None:
        return f"{new_prompt.rstrip()} {placeholders}"
    cut = match.start() + 1
    return f"{new_prompt[:cut]} {placeholders}{new_prompt[cut:]}"


def incorporate_user_input(base_prompt: str, user_input: str) -> str:
    """Deterministic enhancement: note the user's intent after the first sentence."""
    phrases = [p.strip() for p in re.split(r"[.!?]", user_input) if 5 < len(p.strip()) < 50]
    key_phrase = phrases[0] if phrases else user_input.strip()[:50]
    match = _SENTENCE_END.search(base_prompt)
    if match is None:
        return f"Note: {key_phrase}. {base_prompt}"
    cut = match.start() + 1
    return f"{base_prompt[:cut]} Note: {key_phrase}.{base_prompt[cut:]}"


def simple_run_name(campaign_name: str | None, user_input: str | None, today: date | None = None) -> str:
    today = today or date.today()
    label = f"{today:%b} {today.day}"
    if campaign_name and user_input:
        words = " ".join(user_input.split()[:3])
        return f"{campaign_name} - {words} ({label})"[:MAX_RUN_NAME_LENGTH]
    if campaign_name:
        return f"{campaign_name} ({label})"[:MAX_RUN_NAME_LENGTH]
    return f"New Run ({label})"


class CampaignContentGenerator:
    """Asks the LLM for an enhanced prompt and voicemail, with a local fallback."""

    def __init__(self, gateway: LLMGateway) -> None:
        self._gateway = gateway

    async def generate_enhanced_campaign_content(
        self,
        base_prompt: str,
        base_voicemail: str,
        natural_language_input: str,
        context: CampaignContext | None = None,
    ) -> EnhancedCampaignContent:
        """Generate campaign content for one run.

        Raises:
            BadRequestError: If the base prompt or the input is too short.
        """
        if not base_prompt or len(base_prompt.strip()) < MIN_PROMPT_LENGTH:
            raise BadRequestError(
                f"Base prompt is required and must be at least {MIN_PROMPT_LENGTH} characters"
            )
        if not natural_language_input or len(natural_language_input.strip()) < MIN_INPUT_LENGTH:
            raise BadRequestError(
                f"Natural language input is required and must be at least {MIN_INPUT_LENGTH} characters"
            )
        base_voicemail = base_voicemail or ""

        request = ChatRequest(
            messages=[
                ChatMessage(role=MessageRole.SYSTEM, content=build_system_prompt()),
                ChatMessage(
                    role=MessageRole.USER,
                    content=build_user_prompt(base_prompt, base_voicemail, natural_language_input, context),
                ),
            ],
            json_response=True,
        )
        try:
            response = await self._gateway.chat_completion(request)
            content = self._parse(response.content)
        except (LLMError, ValueError) as e:
            logger.warning(
                "Campaign content generation failed, using fallback",
                extra={"correlation_id": request.correlation_id, "error": str(e)},
            )
            return EnhancedCampaignContent(
                new_prompt=incorporate_user_input(base_prompt, natural_language_input),
                new_voicemail_message=base_voicemail,
                suggested_run_name=simple_run_name(context.name if context else None, natural_language_input),
                summary=FALLBACK_SUMMARY,
                ai_generated=False,
            )

        content.new_prompt = restore_missing_variables(content.new_prompt, base_prompt)
        if base_voicemail and not content.new_voicemail_message.strip():
            content.new_voicemail_message = base_voicemail
        if not content.suggested_run_name:
            content.suggested_run_name = simple_run_name(context.name if context else None, natural_language_input)
        return content

    @staticmethod
    def _parse(raw: str) -> EnhancedCampaignContent:
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError("LLM response is not a JSON object")
        new_prompt = str(data.get("new_prompt") or data.get("newPrompt") or "").strip()
        if len(new_prompt) < MIN_PROMPT_LENGTH:
            raise ValueError("LLM response has no usable prompt")
        return EnhancedCampaignContent(
            new_prompt=new_prompt,
            new_voicemail_message=str(data.get("new_voicemail_message") or data.get("newVoicemailMessage") or ""),
            suggested_run_name=str(data.get("suggested_run_name") or data.get("suggestedRunName") or "")[
                :MAX_RUN_NAME_LENGTH
            ],
            summary=str(data.get("summary") or ""),
        )
