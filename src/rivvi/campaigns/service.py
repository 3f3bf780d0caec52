"""
Campaign service for business logic.

Campaigns are created by super admins for an organization. Each campaign
owns a template holding the voice agent, its prompt and the variable and
analysis configuration used by runs and post-call processing.
"""

from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from rivvi.campaigns.models import (
    CallDirection,
    Campaign,
    CampaignRequest,
    CampaignRequestStatus,
    CampaignTemplate,
)
from rivvi.campaigns.schemas import (
    CampaignCreate,
    CampaignDetail,
    CampaignListItem,
    CampaignResponse,
    CampaignUpdate,
    TemplateResponse,
    TemplateSummary,
)
from rivvi.config import get_settings
from rivvi.runs.models import Run
from rivvi.shared.exceptions import BadRequestError, NotFoundError
from rivvi.shared.logging import get_logger
from rivvi.telephony.interface import TelephonyProvider, TelephonyProviderError

logger = get_logger(__name__)


class CampaignService:
    """Service for campaigns and their templates."""

    def __init__(self, session: AsyncSession, provider: TelephonyProvider) -> None:
        self._session = session
        self._provider = provider

    async def _get_campaign(self, campaign_id: UUID, org_id: UUID | None = None) -> Campaign:
        campaign = await self._session.get(Campaign, campaign_id)
        if campaign is None or (org_id is not None and campaign.org_id != org_id):
            raise NotFoundError(
                f"Campaign with ID {campaign_id} not found",
                {"campaign_id": str(campaign_id)},
            )
        return campaign

    async def _get_template(self, template_id: UUID) -> CampaignTemplate:
        template = await self._session.get(CampaignTemplate, template_id)
        if template is None:
            raise NotFoundError(
                f"Template with ID {template_id} not found",
                {"template_id": str(template_id)},
            )
        return template

    async def get_with_template(
        self, campaign_id: UUID, org_id: UUID | None = None
    ) -> tuple[Campaign, CampaignTemplate]:
        campaign = await self._get_campaign(campaign_id, org_id)
        return campaign, await self._get_template(campaign.template_id)

    async def get_all(
        self,
        org_id: UUID,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[CampaignListItem], int]:
        total = (
            await self._session.execute(
                select(func.count(Campaign.id)).where(Campaign.org_id == org_id)
            )
        ).scalar() or 0

        run_count = (
            select(func.count(Run.id))
            .where(Run.campaign_id == Campaign.id)
            .correlate(Campaign)
            .scalar_subquery()
        )
        stmt = (
            select(Campaign, CampaignTemplate, run_count)
            .join(CampaignTemplate, CampaignTemplate.id == Campaign.template_id)
            .where(Campaign.org_id == org_id)
            .order_by(Campaign.created_at.desc(), Campaign.name)
            .offset(offset)
            .limit(limit)
        )
        rows = (await self._session.execute(stmt)).all()
        items = [
            CampaignListItem(
                **CampaignResponse.model_validate(campaign).model_dump(),
                template=TemplateSummary.model_validate(template),
                run_count=count or 0,
            )
            for campaign, template, count in rows
        ]
        return items, total

    async def get_by_id(self, org_id: UUID | None, campaign_id: UUID) -> CampaignDetail:
        """Campaign with its full template. ``org_id=None`` skips scoping (super admin)."""
        campaign, template = await self.get_with_template(campaign_id, org_id)
        return CampaignDetail(
            **CampaignResponse.model_validate(campaign).model_dump(),
            template=TemplateResponse.model_validate(template),
        )

    async def get_recent_runs(self, org_id: UUID, campaign_id: UUID, limit: int = 5) -> list[Run]:
        await self._get_campaign(campaign_id, org_id)
        stmt = (
            select(Run)
            .where(Run.campaign_id == campaign_id, Run.org_id == org_id)
            .order_by(Run.created_at.desc())
            .limit(limit)
        )
        return list((await self._session.execute(stmt)).scalars().all())

    async def _clear_default_inbound(self, org_id: UUID, keep_id: UUID | None = None) -> None:
        stmt = update(Campaign).where(
            Campaign.org_id == org_id,
            Campaign.is_default_inbound.is_(True),
        )
        if keep_id is not None:
            stmt = stmt.where(Campaign.id != keep_id)
        await self._session.execute(stmt.values(is_default_inbound=False))

    async def create(self, data: CampaignCreate, created_by: UUID | None = None) -> Campaign:
        try:
            agent_info = await self._provider.get_agent_complete(data.agent_id)
        except TelephonyProviderError as e:
            logger.warning(
                "Agent verification failed",
                extra={"agent_id": data.agent_id, "error": e.message},
            )
            raise BadRequestError(
                f"Failed to verify agent: {e.message}",
                {"agent_id": data.agent_id},
            )

        template = CampaignTemplate(
            name=data.name,
            description=data.description,
            agent_id=data.agent_id,
            llm_id=data.llm_id or agent_info["combined"]["llm_id"],
            base_prompt=data.base_prompt,
            voicemail_message=data.voicemail_message,
            variables_config=data.variables_config.model_dump(mode="json"),
            analysis_config=data.analysis_config.model_dump(mode="json"),
            created_by=created_by,
        )
        self._session.add(template)
        await self._session.flush()

        is_default_inbound = data.direction == CallDirection.INBOUND and data.is_default_inbound
        if is_default_inbound:
            await self._clear_default_inbound(data.org_id)

        campaign = Campaign(
            org_id=data.org_id,
            name=data.name,
            template_id=template.id,
            direction=data.direction,
            is_active=True,
            is_default_inbound=is_default_inbound,
            metadata_={},
        )
        self._session.add(campaign)
        await self._session.flush()

        if data.request_id is not None:
            request = await self._session.get(CampaignRequest, data.request_id)
            if request is not None:
                request.status = CampaignRequestStatus.COMPLETED
                request.resulting_campaign_id = campaign.id
                await self._session.flush()

        if data.configure_webhooks:
            try:
                urls = await self._provider.update_agent_webhooks(
                    data.agent_id,
                    str(data.org_id),
                    str(campaign.id),
                    get_settings().app_base_url,
                )
                template.post_call_webhook_url = urls["post_call_webhook_url"]
                template.inbound_webhook_url = urls["inbound_webhook_url"]
                await self._session.flush()
            except TelephonyProviderError as e:
                logger.error(
                    "Failed to configure agent webhooks",
                    extra={"campaign_id": str(campaign.id), "agent_id": data.agent_id, "error": e.message},
                )

        await self._session.refresh(campaign)
        logger.info(
            "Campaign created",
            extra={
                "campaign_id": str(campaign.id),
                "org_id": str(data.org_id),
                "direction": data.direction.value,
            },
        )
        return campaign

    async def update(self, campaign_id: UUID, data: CampaignUpdate) -> Campaign:
        campaign, template = await self.get_with_template(campaign_id)
        update_data = data.model_dump(exclude_unset=True)

        if "name" in update_data and data.name is not None:
            campaign.name = data.name
        if data.is_active is not None:
            campaign.is_active = data.is_active
        if data.is_default_inbound is not None:
            if data.is_default_inbound and campaign.direction == CallDirection.INBOUND:
                await self._clear_default_inbound(campaign.org_id, keep_id=campaign.id)
                campaign.is_default_inbound = True
            else:
                campaign.is_default_inbound = False

        if data.base_prompt is not None:
            template.base_prompt = data.base_prompt
        if "voicemail_message" in update_data:
            template.voicemail_message = data.voicemail_message
        if data.variables_config is not None:
            template.variables_config = data.variables_config.model_dump(mode="json")
        if data.analysis_config is not None:
            template.analysis_config = data.analysis_config.model_dump(mode="json")

        await self._session.flush()
        await self._session.refresh(campaign)
        logger.info(
            "Campaign updated",
            extra={"campaign_id": str(campaign_id), "fields": sorted(update_data)},
        )
        return campaign

    async def update_agent_prompt(
        self,
        campaign_id: UUID,
        prompt: str,
        voicemail_message: str | None = None,
    ) -> CampaignTemplate:
        """Push a new prompt (and voicemail) to the provider, then store it on the template."""
        _, template = await self.get_with_template(campaign_id)

        await self._provider.update_llm(template.llm_id, {"general_prompt": prompt})
        if voicemail_message is not None:
            await self._provider.update_agent(template.agent_id, {"voicemail_message": voicemail_message})

        template.base_prompt = prompt
        if voicemail_message is not None:
            template.voicemail_message = voicemail_message
        await self._session.flush()
        await self._session.refresh(template)
        logger.info(
            "Agent prompt updated",
            extra={"campaign_id": str(campaign_id), "llm_id": template.llm_id},
        )
        return template
