# workspace.py
"""Lead workspace flows.

Composes the governed data client and the Gemini client into the flows the
GTM Command Center screens run: loading leads, capturing and enriching
them, writing outbound drafts, moving them through the pipeline and
logging activities.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from .gemini_client import GeminiClient
from .logging_utils import get_logger
from .models import Activity, ICPProfile, IcpFit, Lead, LeadStage, OutboundDraft, Startup
from .throttle import Decision, GuardedCallError, RequestGovernor, is_throttle_rejection
from .throttle.policies import BULK_DRAFTS

BULK_ELIGIBLE_STAGES = (LeadStage.PROSPECT, LeadStage.RESEARCHED)
DEFAULT_BULK_LIMIT = 5
STALLED_AFTER_DAYS = 7

# Fields a generated enrichment may write back to a lead row
_ENRICHABLE_FIELDS = frozenset(Lead.model_fields) - {"id", "startup_id", "created_at"}


@dataclass
class BulkDraftReport:
    """Outcome of a bulk draft run.

    Drafts written before a throttle rejection are kept; there is no rollback.

    Attributes:
        written: Ids of leads that received a draft.
        failed: Lead id to error message for leads that failed for other reasons.
        throttled: Whether the run stopped on a throttle rejection.
        retry_after_ms: Wait reported by that rejection.
    """

    written: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    throttled: bool = False
    retry_after_ms: float = 0


@dataclass(frozen=True)
class NextAction:
    """Suggested next step for a lead on the pipeline board."""

    label: str
    urgent: bool = False


_STAGE_ACTIONS = {
    LeadStage.PROSPECT: NextAction("Research & Enrich"),
    LeadStage.RESEARCHED: NextAction("Send First Draft"),
    LeadStage.CONTACTED: NextAction("Follow Up (3d)"),
    LeadStage.MEETING: NextAction("Send Proposal"),
    LeadStage.PROPOSAL: NextAction("Close / Sign", urgent=True),
}


def next_action(lead: Lead, now: Optional[datetime] = None) -> Optional[NextAction]:
    """Suggest the next step for a lead; leads never touched count as stalled."""
    now = now or datetime.now(timezone.utc)

    if lead.last_touch_at is None:
        days_since_touch = 99
    else:
        last_touch = lead.last_touch_at
        if last_touch.tzinfo is None:
            last_touch = last_touch.replace(tzinfo=timezone.utc)
        days_since_touch = (now - last_touch).days

    if days_since_touch > STALLED_AFTER_DAYS:
        return NextAction("Stalled: Bump Now", urgent=True)

    return _STAGE_ACTIONS.get(LeadStage(lead.stage))


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LeadWorkspace:
    """Lead management flows for one user session.

    Attributes:
        data_client: Governed data client (``GuardedDataClient``).
        gemini: Gemini client sharing the same governor.
        governor: The session's request governor.
    """

    def __init__(
        self,
        data_client,
        gemini: GeminiClient,
        governor: RequestGovernor,
    ):
        self.logger = get_logger(__name__)
        self.data_client = data_client
        self.gemini = gemini
        self.governor = governor

    def remaining(self, action_id: str) -> Decision:
        """Status of an action for display, without consuming an attempt."""
        return self.governor.peek_status(action_id)

    async def fetch_leads(
        self,
        startup_id: str,
        stage: Optional[LeadStage] = None,
    ) -> List[Lead]:
        """Load a startup's leads, most recently updated first."""
        query = self.data_client.table("leads").select("*").eq("startup_id", startup_id)
        if stage is not None:
            query = query.eq("stage", LeadStage(stage).value)
        result = (await query.order("updated_at", desc=True).execute()).raise_for_error()
        return [Lead.model_validate(row) for row in result.data or []]

    async def fetch_active_icp(self, startup_id: str) -> Optional[ICPProfile]:
        """Return the newest ICP profile of a startup, if any."""
        result = (
            await self.data_client.table("icp_profiles")
            .select("*")
            .eq("startup_id", startup_id)
            .order("created_at", desc=True)
            .limit(1)
            .execute()
        ).raise_for_error()
        rows = result.data or []
        return ICPProfile.model_validate(rows[0]) if rows else None

    async def _insert_lead(self, row: Dict[str, Any]) -> Lead:
        result = (
            await self.data_client.table("leads").insert([row]).select().single().execute()
        ).raise_for_error()
        return Lead.model_validate(result.data)

    async def create_lead(self, startup_id: str, contact_name: str) -> Lead:
        """Create a bare prospect."""
        return await self._insert_lead({
            "startup_id": startup_id,
            "contact_name": contact_name,
            "stage": LeadStage.PROSPECT.value,
            "icp_fit": IcpFit.LOW.value,
        })

    async def save_captured_lead(self, startup_id: str, lead_data: Dict[str, Any]) -> Lead:
        """Store a lead captured from a clipped page or note."""
        return await self._insert_lead({
            **lead_data,
            "startup_id": startup_id,
            "stage": LeadStage.PROSPECT.value,
            "icp_fit": IcpFit.MEDIUM.value,
        })

    async def capture_lead_from_text(self, startup_id: str, text: str) -> Lead:
        """Parse free text into lead fields and store the lead."""
        parsed = await self.gemini.parse_lead_from_text(text)
        return await self.save_captured_lead(startup_id, _only_lead_fields(parsed))

    async def update_stage(self, lead_id: str, stage: LeadStage) -> None:
        """Move a lead to another pipeline stage."""
        (
            await self.data_client.table("leads")
            .update({"stage": LeadStage(stage).value})
            .eq("id", lead_id)
            .execute()
        ).raise_for_error()
        self.logger.info("Lead stage updated", extra={"lead_id": lead_id, "stage": LeadStage(stage).value})

    async def fetch_activities(self, lead_id: str) -> List[Activity]:
        """Load a lead's activities, most recent first."""
        result = (
            await self.data_client.table("activities")
            .select("*")
            .eq("lead_id", lead_id)
            .order("done_at", desc=True)
            .execute()
        ).raise_for_error()
        return [Activity.model_validate(row) for row in result.data or []]

    async def log_activity(
        self,
        lead_id: str,
        activity: Dict[str, Any],
    ) -> Tuple[Activity, Optional[Lead]]:
        """Record an activity and stamp the lead's last touch.

        A failure to stamp the lead is logged; the activity is still returned.
        """
        result = (
            await self.data_client.table("activities")
            .insert([{**activity, "lead_id": lead_id}])
            .select()
            .single()
            .execute()
        ).raise_for_error()
        logged = Activity.model_validate(result.data)

        update = (
            await self.data_client.table("leads")
            .update({
                "last_touch_at": logged.done_at.isoformat() if logged.done_at else None,
                "last_touch_type": logged.activity_type,
            })
            .eq("id", lead_id)
            .select()
            .single()
            .execute()
        )
        if update.error:
            self.logger.error(
                f"Failed to stamp last touch: {update.error.message}",
                extra={"lead_id": lead_id},
            )
            return logged, None

        return logged, Lead.model_validate(update.data)

    async def _apply_enrichment(self, lead: Lead, enrichment: Dict[str, Any]) -> Lead:
        result = (
            await self.data_client.table("leads")
            .update(_only_lead_fields(enrichment))
            .eq("id", lead.id)
            .select()
            .single()
            .execute()
        ).raise_for_error()
        return Lead.model_validate(result.data)

    async def enrich_lead(
        self,
        lead: Lead,
        startup: Startup,
        icp: Optional[ICPProfile] = None,
    ) -> Lead:
        """Generate AI sales insights for a lead and store them."""
        enrichment = await self.gemini.enrich_lead(lead, startup, icp)
        return await self._apply_enrichment(lead, enrichment)

    async def live_enrich_lead(self, lead: Lead) -> Lead:
        """Fetch live company signals for a lead and store them."""
        enrichment = await self.gemini.enrich_lead_with_live_search(lead)
        return await self._apply_enrichment(lead, enrichment)

    async def generate_draft(
        self,
        lead: Lead,
        startup: Startup,
        icp: ICPProfile,
        channel: str = "email",
    ) -> OutboundDraft:
        """Write an outbound draft and save it as the lead's active draft.

        A failed save is logged; the draft is still returned. Throttle
        rejections propagate.
        """
        generated = await self.gemini.generate_outbound_draft(lead, startup, icp, channel)
        draft = OutboundDraft(
            subject=generated.get("subject"),
            body=generated.get("body", ""),
            type=channel,
            generated_at=_utcnow(),
        )

        result = await (
            self.data_client.table("leads")
            .update({"active_draft": draft.model_dump(mode="json")})
            .eq("id", lead.id)
            .execute()
        )
        if result.error:
            self.logger.error(
                f"Failed to save draft: {result.error.message}",
                extra={"lead_id": lead.id},
            )

        return draft

    async def auto_prospect(self, startup_id: str, icp: ICPProfile) -> List[Lead]:
        """Find companies matching the ICP and store them as prospects."""
        prospects = await self.gemini.find_prospects(icp)
        if not prospects:
            self.logger.info("No prospects found", extra={"startup_id": startup_id})
            return []

        rows = [
            {
                **_only_lead_fields(prospect),
                "startup_id": startup_id,
                "stage": LeadStage.PROSPECT.value,
                "icp_fit": IcpFit.MEDIUM.value,
                "contact_name": "To be identified",
                "title": "Target Decision Maker",
            }
            for prospect in prospects
            if isinstance(prospect, dict)
        ]

        result = (
            await self.data_client.table("leads").insert(rows).select().execute()
        ).raise_for_error()
        return [Lead.model_validate(row) for row in result.data or []]

    async def bulk_drafts(
        self,
        startup: Startup,
        icp: ICPProfile,
        leads: List[Lead],
        max_leads: int = DEFAULT_BULK_LIMIT,
    ) -> BulkDraftReport:
        """Write email drafts for eligible leads, one at a time.

        Eligible leads have no active draft and sit in Prospect or Researched.
        The batch is admitted once; a throttle rejection on any lead stops the
        run, any other failure is recorded and the run moves on.

        Raises:
            GuardedCallError: If the batch itself is rejected.
        """
        targets = [
            lead for lead in leads
            if lead.active_draft is None and lead.stage in BULK_ELIGIBLE_STAGES
        ][:max_leads]

        report = BulkDraftReport()
        if not targets:
            return report

        decision = self.governor.check_and_consume(BULK_DRAFTS)
        if not decision.allowed:
            raise GuardedCallError.from_decision(BULK_DRAFTS, decision)

        for lead in targets:
            try:
                await self.generate_draft(lead, startup, icp, "email")
            except Exception as e:
                if is_throttle_rejection(e):
                    report.throttled = True
                    report.retry_after_ms = getattr(e, "retry_after_ms", 0)
                    self.logger.warning(
                        "Bulk drafts stopped by throttle",
                        extra={"lead_id": lead.id, "written": len(report.written)},
                    )
                    break
                report.failed[lead.id] = str(e)
                self.logger.error(
                    f"Draft failed for lead: {e}",
                    extra={"lead_id": lead.id},
                )
                continue
            report.written.append(lead.id)

        self.logger.info(
            "Bulk drafts finished",
            extra={
                "written": len(report.written),
                "failed": len(report.failed),
                "throttled": report.throttled,
            },
        )
        return report


def _only_lead_fields(values: Dict[str, Any]) -> Dict[str, Any]:
    """Drop keys that are not writable lead columns."""
    if not isinstance(values, dict):
        return {}
    return {key: value for key, value in values.items() if key in _ENRICHABLE_FIELDS}
