"""
AI content generation API router.
"""

from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from rivvi.ai.generator import CampaignContentGenerator
from rivvi.ai.models import CampaignContext, GenerateContentRequest, GenerateContentResponse
from rivvi.ai.openai_adapter import LLMGateway, get_llm_gateway
from rivvi.auth.middleware import CurrentUser
from rivvi.auth.rbac import require_org_member
from rivvi.campaigns.models import AgentVariation, Campaign, CampaignTemplate
from rivvi.shared.database import get_db_session
from rivvi.shared.exceptions import NotFoundError
from rivvi.shared.logging import get_logger
from rivvi.shared.schemas import ErrorResponse

logger = get_logger(__name__)

router = APIRouter(prefix="/api/ai", tags=["ai"])


def get_content_generator(
    gateway: Annotated[LLMGateway, Depends(get_llm_gateway)],
) -> CampaignContentGenerator:
    return CampaignContentGenerator(gateway)


@router.post(
    "/generate",
    response_model=GenerateContentResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Prompt or input too short"},
        404: {"model": ErrorResponse, "description": "Campaign not found"},
    },
)
async def generate_campaign_content(
    data: GenerateContentRequest,
    current_user: Annotated[CurrentUser, Depends(require_org_member)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
    generator: Annotated[CampaignContentGenerator, Depends(get_content_generator)],
) -> GenerateContentResponse:
    """Enhance a campaign's prompt and voicemail and store the result as a variation."""
    campaign = await session.get(Campaign, data.campaign_id)
    if campaign is None or campaign.org_id != current_user.organization_id:
        raise NotFoundError(
            f"Campaign with ID {data.campaign_id} not found",
            {"campaign_id": str(data.campaign_id)},
        )
    template = await session.get(CampaignTemplate, campaign.template_id)
    if template is None:
        raise NotFoundError(
            f"Template for campaign {campaign.id} not found",
            {"campaign_id": str(campaign.id)},
        )

    base_prompt = data.base_prompt or template.base_prompt
    base_voicemail = (
        data.base_voicemail_message
        if data.base_voicemail_message is not None
        else template.voicemail_message or ""
    )
    content = await generator.generate_enhanced_campaign_content(
        base_prompt,
        base_voicemail,
        data.natural_language_input,
        CampaignContext(
            name=campaign.name,
            description=template.description,
            type=campaign.direction.value,
        ),
    )

    variation = AgentVariation(
        campaign_id=campaign.id,
        user_id=current_user.user_id,
        user_input=data.natural_language_input,
        original_base_prompt=base_prompt,
        original_voicemail_message=base_voicemail or None,
        customized_prompt=content.new_prompt,
        customized_voicemail_message=content.new_voicemail_message or None,
        suggested_run_name=content.suggested_run_name or None,
        change_description=content.summary or None,
        metadata_={"ai_generated": content.ai_generated},
    )
    session.add(variation)
    await session.flush()

    logger.info(
        "Agent variation stored",
        extra={
            "variation_id": str(variation.id),
            "campaign_id": str(campaign.id),
            "ai_generated": content.ai_generated,
        },
    )
    return GenerateContentResponse(
        **content.model_dump(),
        variation_id=variation.id,
        campaign_id=campaign.id,
    )
