"""
Prompt templates for campaign content enhancement.
"""

from rivvi.ai.models import CampaignContext

ENHANCE_SYSTEM_PROMPT = """You are an expert AI voice communication designer specializing in healthcare communications.
Your task is to enhance both a conversation prompt and a voicemail message based on natural language input from a user.

IMPORTANT GUIDELINES:
1. Maintain all existing variables in the format {{{{variable_name}}}} exactly as they appear
2. Never remove, modify, or add new variables
3. Preserve the overall structure and flow of both the prompt and voicemail message
4. Incorporate the user's natural language input to enhance tone, style, and effectiveness
5. Ensure both outputs remain conversational and natural for voice AI
6. Keep healthcare-specific language and context appropriate
7. Do not add technical instructions or formatting that would confuse a voice AI system
8. Generate a clear, concise name for this run based on the campaign and customization

RESPONSE FORMAT:
Respond with a single JSON object with exactly these keys:
- "new_prompt": the enhanced conversation prompt (all variables preserved)
- "new_voicemail_message": the enhanced voicemail message, or "" if none was provided
- "suggested_run_name": a descriptive run name of at most {max_name_length} characters
- "summary": a short explanation of the key changes you made"""

ENHANCE_USER_PROMPT_TEMPLATE = """Base Prompt for Live Conversation:
{base_prompt}

{voicemail_section}

Campaign Context:
Name: {name}
Description: {description}
Type: {type}

Natural Language Input from User:
{natural_language_input}

Please enhance both the conversation prompt and voicemail message by incorporating the natural language input while preserving all variables and the overall structure. Then suggest a name for this run and provide a summary of the key changes you made."""

MAX_RUN_NAME_LENGTH = 50


def build_system_prompt() -> str:
    return ENHANCE_SYSTEM_PROMPT.format(max_name_length=MAX_RUN_NAME_LENGTH)


def build_user_prompt(
    base_prompt: str,
    base_voicemail: str,
    natural_language_input: str,
    context: CampaignContext | None = None,
) -> str:
    """Build the user message describing what to enhance.

    Args:
        base_prompt: Campaign prompt with ``{{variable}}`` placeholders.
        base_voicemail: Voicemail message, possibly empty.
        natural_language_input: What the user wants changed.
        context: Optional campaign name, description and type.

    Returns:
        Formatted user prompt string.
    """
    context = context or CampaignContext()
    voicemail_section = (
        f"Base Voicemail Message:\n{base_voicemail}"
        if base_voicemail
        else "No base voicemail message provided."
    )
    return ENHANCE_USER_PROMPT_TEMPLATE.format(
        base_prompt=base_prompt,
        voicemail_section=voicemail_section,
        name=context.name or "Not specified",
        description=context.description or "Not specified",
        type=context.type or "Not specified",
        natural_language_input=natural_language_input,
    )
