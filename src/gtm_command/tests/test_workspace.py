# src/gtm_command/tests/test_workspace.py
"""
Unit tests for lead workspace flows.

Tests cover:
- Loading leads and the active ICP
- Lead creation and capture from free text
- Stage updates and activity logging
- Enrichment and outbound drafts
- Auto-prospecting
- Bulk drafts with partial success
- Next action suggestions
"""
import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from gtm_command.data_client import DataClientError, DataError, GuardedDataClient, QueryResult
from gtm_command.models import ICPProfile, Lead, LeadStage, OutboundDraft, Startup
from gtm_command.throttle import GuardedCallError
from gtm_command.throttle.policies import BULK_DRAFTS, DATA_READ, DATA_WRITE
from gtm_command.workspace import LeadWorkspace, next_action


@pytest.fixture
def gemini():
    """Mock Gemini client with async operations."""
    client = MagicMock()
    client.parse_lead_from_text = AsyncMock()
    client.enrich_lead = AsyncMock()
    client.enrich_lead_with_live_search = AsyncMock()
    client.generate_outbound_draft = AsyncMock(return_value={"subject": "Hi", "body": "Hello"})
    client.find_prospects = AsyncMock(return_value=[])
    return client


@pytest.fixture
def workspace(data_client, gemini, governor):
    """Workspace over a guarded recording client."""
    return LeadWorkspace(GuardedDataClient(data_client, governor), gemini, governor)


@pytest.fixture
def startup():
    """Sample startup."""
    return Startup(id="s-1", name="Acme")


@pytest.fixture
def icp():
    """Sample ICP profile."""
    return ICPProfile(id="icp-1", startup_id="s-1", name="SaaS", value_props="Faster pipeline")


def make_leads(count, **overrides):
    """Create prospect leads l-0..l-N."""
    return [Lead(id=f"l-{i}", contact_name=f"Contact {i}", **overrides) for i in range(count)]


class TestLoading:
    """Tests for reading leads and profiles."""

    @pytest.mark.unit
    def test_fetch_leads(self, workspace, transport, governor):
        """Test that leads are filtered, ordered and validated."""
        transport.results.append(QueryResult(data=[{"id": "l-1", "stage": "Meeting", "extra": 1}]))

        leads = asyncio.run(workspace.fetch_leads("s-1", stage=LeadStage.MEETING))

        assert [lead.id for lead in leads] == ["l-1"]
        assert leads[0].stage == "Meeting"
        request = transport.requests[0]
        assert request.filters == [("startup_id", "s-1"), ("stage", "Meeting")]
        assert request.ordering == [("updated_at", True)]
        assert governor.peek_status(DATA_READ).remaining == 59

    @pytest.mark.unit
    def test_fetch_leads_error_raises(self, workspace, transport):
        """Test that a failed load raises DataClientError."""
        transport.results.append(QueryResult(error=DataError(message="timeout")))
        with pytest.raises(DataClientError):
            asyncio.run(workspace.fetch_leads("s-1"))

    @pytest.mark.unit
    def test_fetch_active_icp(self, workspace, transport):
        """Test that the newest profile is returned."""
        transport.results.append(QueryResult(data=[{"id": "icp-2", "name": "Latest"}]))

        profile = asyncio.run(workspace.fetch_active_icp("s-1"))

        assert profile.id == "icp-2"
        assert transport.requests[0].limit == 1
        assert transport.requests[0].ordering == [("created_at", True)]

    @pytest.mark.unit
    def test_fetch_active_icp_none(self, workspace):
        """Test that a startup without profiles has no active ICP."""
        assert asyncio.run(workspace.fetch_active_icp("s-1")) is None

    @pytest.mark.unit
    def test_remaining_does_not_consume(self, workspace, governor):
        """Test that the remaining status is a peek."""
        assert workspace.remaining(BULK_DRAFTS).remaining == 2
        assert workspace.remaining(BULK_DRAFTS).remaining == 2


class TestLeadCreation:
    """Tests for creating and capturing leads."""

    @pytest.mark.unit
    def test_create_lead(self, workspace, transport, governor):
        """Test that a new lead starts as a low-fit prospect."""
        transport.results.append(QueryResult(data={"id": "l-1", "contact_name": "Ada"}))

        lead = asyncio.run(workspace.create_lead("s-1", "Ada"))

        assert lead.id == "l-1"
        request = transport.requests[0]
        assert request.operation == "insert"
        assert request.payload == [{
            "startup_id": "s-1",
            "contact_name": "Ada",
            "stage": "Prospect",
            "icp_fit": "Low",
        }]
        assert governor.peek_status(DATA_WRITE).remaining == 29

    @pytest.mark.unit
    def test_capture_lead_from_text(self, workspace, transport, gemini):
        """Test that parsed fields are stored and unknown keys dropped."""
        gemini.parse_lead_from_text.return_value = {
            "contact_name": "Ada",
            "company_name": "Analytical",
            "favourite_color": "green",
            "stage": "Won",
        }
        transport.results.append(QueryResult(data={"id": "l-9", "contact_name": "Ada"}))

        lead = asyncio.run(workspace.capture_lead_from_text("s-1", "Ada from Analytical"))

        assert lead.id == "l-9"
        payload = transport.requests[0].payload[0]
        assert "favourite_color" not in payload
        assert payload["stage"] == "Prospect"
        assert payload["icp_fit"] == "Medium"
        assert payload["company_name"] == "Analytical"


class TestPipeline:
    """Tests for stage changes and activities."""

    @pytest.mark.unit
    def test_update_stage(self, workspace, transport):
        """Test that the stage is written for the lead."""
        asyncio.run(workspace.update_stage("l-1", LeadStage.WON))

        request = transport.requests[0]
        assert request.operation == "update"
        assert request.payload == {"stage": "Won"}
        assert request.filters == [("id", "l-1")]

    @pytest.mark.unit
    def test_update_stage_error_raises(self, workspace, transport):
        """Test that a failed stage update raises."""
        transport.results.append(QueryResult(error=DataError(message="denied")))
        with pytest.raises(DataClientError):
            asyncio.run(workspace.update_stage("l-1", LeadStage.LOST))

    @pytest.mark.unit
    def test_log_activity_stamps_lead(self, workspace, transport):
        """Test that logging an activity updates the last touch."""
        done_at = "2026-01-05T10:00:00+00:00"
        transport.results.extend([
            QueryResult(data={"id": "a-1", "activity_type": "call", "done_at": done_at}),
            QueryResult(data={"id": "l-1", "last_touch_type": "call"}),
        ])

        activity, lead = asyncio.run(workspace.log_activity("l-1", {"activity_type": "call"}))

        assert activity.activity_type == "call"
        assert lead.last_touch_type == "call"
        assert transport.requests[0].payload == [{"activity_type": "call", "lead_id": "l-1"}]
        assert transport.requests[1].payload["last_touch_type"] == "call"
        assert transport.requests[1].payload["last_touch_at"].startswith("2026-01-05T10:00:00")

    @pytest.mark.unit
    def test_log_activity_lead_update_failure(self, workspace, transport):
        """Test that a failed last-touch stamp still returns the activity."""
        transport.results.extend([
            QueryResult(data={"id": "a-1", "activity_type": "note"}),
            QueryResult(error=DataError(message="conflict")),
        ])

        activity, lead = asyncio.run(workspace.log_activity("l-1", {"activity_type": "note"}))

        assert activity.id == "a-1"
        assert lead is None

    @pytest.mark.unit
    def test_fetch_activities(self, workspace, transport):
        """Test that activities are loaded newest first."""
        transport.results.append(QueryResult(data=[{"id": "a-1", "activity_type": "email"}]))

        activities = asyncio.run(workspace.fetch_activities("l-1"))

        assert activities[0].activity_type == "email"
        assert transport.requests[0].ordering == [("done_at", True)]


class TestEnrichmentAndDrafts:
    """Tests for AI-backed lead updates."""

    @pytest.mark.unit
    def test_enrich_lead(self, workspace, transport, gemini, startup, icp):
        """Test that generated insights are written back to the lead."""
        lead = Lead(id="l-1")
        gemini.enrich_lead.return_value = {
            "account_summary": "Big account",
            "icp_fit": "High",
            "id": "overwrite-attempt",
        }
        transport.results.append(QueryResult(data={"id": "l-1", "icp_fit": "High"}))

        enriched = asyncio.run(workspace.enrich_lead(lead, startup, icp))

        assert enriched.icp_fit == "High"
        assert transport.requests[0].payload == {"account_summary": "Big account", "icp_fit": "High"}
        assert transport.requests[0].filters == [("id", "l-1")]

    @pytest.mark.unit
    def test_live_enrich_lead(self, workspace, transport, gemini):
        """Test that live signals are written back to the lead."""
        gemini.enrich_lead_with_live_search.return_value = {
            "funding_status": "Series A",
            "tech_stack": ["Python"],
        }
        transport.results.append(QueryResult(data={"id": "l-1", "funding_status": "Series A"}))

        enriched = asyncio.run(workspace.live_enrich_lead(Lead(id="l-1", company_name="Acme")))

        assert enriched.funding_status == "Series A"
        assert transport.requests[0].payload["tech_stack"] == ["Python"]

    @pytest.mark.unit
    def test_generate_draft(self, workspace, transport, startup, icp):
        """Test that the draft is saved as the lead's active draft."""
        draft = asyncio.run(workspace.generate_draft(Lead(id="l-1"), startup, icp))

        assert isinstance(draft, OutboundDraft)
        assert draft.subject == "Hi"
        assert draft.body == "Hello"
        assert draft.type == "email"
        saved = transport.requests[0].payload["active_draft"]
        assert saved["body"] == "Hello"
        assert saved["type"] == "email"

    @pytest.mark.unit
    def test_generate_draft_save_failure(self, workspace, transport, startup, icp):
        """Test that a failed save still returns the draft."""
        transport.results.append(QueryResult(error=DataError(message="denied")))

        draft = asyncio.run(workspace.generate_draft(Lead(id="l-1"), startup, icp, "linkedin"))

        assert draft.type == "linkedin"

    @pytest.mark.unit
    def test_generate_draft_throttled(self, workspace, transport, gemini, startup, icp):
        """Test that a throttled draft propagates without a write."""
        gemini.generate_outbound_draft.side_effect = GuardedCallError(
            "wait", 15000, "gemini:outbound-draft"
        )

        with pytest.raises(GuardedCallError):
            asyncio.run(workspace.generate_draft(Lead(id="l-1"), startup, icp))

        assert transport.requests == []


class TestAutoProspect:
    """Tests for auto-prospecting."""

    @pytest.mark.unit
    def test_no_prospects(self, workspace, transport, icp):
        """Test that nothing is inserted when no companies are found."""
        assert asyncio.run(workspace.auto_prospect("s-1", icp)) == []
        assert transport.requests == []

    @pytest.mark.unit
    def test_prospects_inserted(self, workspace, transport, gemini, icp):
        """Test that found companies are stored as medium-fit prospects."""
        gemini.find_prospects.return_value = [
            {"company_name": "Acme", "website": "acme.com", "score": 9},
            "not a company",
        ]
        transport.results.append(QueryResult(data=[{"id": "l-1", "company_name": "Acme"}]))

        leads = asyncio.run(workspace.auto_prospect("s-1", icp))

        assert [lead.company_name for lead in leads] == ["Acme"]
        rows = transport.requests[0].payload
        assert rows == [{
            "company_name": "Acme",
            "website": "acme.com",
            "startup_id": "s-1",
            "stage": "Prospect",
            "icp_fit": "Medium",
            "contact_name": "To be identified",
            "title": "Target Decision Maker",
        }]


class TestBulkDrafts:
    """Tests for bulk draft generation."""

    @pytest.mark.unit
    def test_only_eligible_leads(self, workspace, gemini, startup, icp):
        """Test that drafted or advanced leads are skipped."""
        leads = [
            Lead(id="fresh", stage="Prospect"),
            Lead(id="researched", stage="Researched"),
            Lead(id="contacted", stage="Contacted"),
            Lead(id="drafted", active_draft=OutboundDraft(body="x")),
        ]

        report = asyncio.run(workspace.bulk_drafts(startup, icp, leads))

        assert report.written == ["fresh", "researched"]
        assert gemini.generate_outbound_draft.await_count == 2

    @pytest.mark.unit
    def test_max_leads(self, workspace, startup, icp):
        """Test that at most the limit of leads is processed."""
        report = asyncio.run(workspace.bulk_drafts(startup, icp, make_leads(8)))
        assert report.written == [f"l-{i}" for i in range(5)]

    @pytest.mark.unit
    def test_no_targets_consumes_nothing(self, workspace, governor, startup, icp):
        """Test that an empty batch is not admitted."""
        report = asyncio.run(workspace.bulk_drafts(startup, icp, []))

        assert report.written == []
        assert governor.peek_status(BULK_DRAFTS).remaining == 2

    @pytest.mark.unit
    def test_batch_rejected(self, workspace, gemini, startup, icp):
        """Test that the third batch within a minute is rejected up front."""
        for _ in range(2):
            asyncio.run(workspace.bulk_drafts(startup, icp, make_leads(1)))
        gemini.generate_outbound_draft.reset_mock()

        with pytest.raises(GuardedCallError) as exc_info:
            asyncio.run(workspace.bulk_drafts(startup, icp, make_leads(1)))

        assert exc_info.value.action_id == BULK_DRAFTS
        assert exc_info.value.retry_after_ms == 60000
        gemini.generate_outbound_draft.assert_not_awaited()

    @pytest.mark.unit
    def test_throttle_stops_run(self, workspace, gemini, startup, icp):
        """Test that drafts before a rejection are kept and the run stops."""
        gemini.generate_outbound_draft.side_effect = [
            {"subject": "A", "body": "a"},
            GuardedCallError("wait", 15000, "gemini:outbound-draft"),
            {"subject": "C", "body": "c"},
        ]

        report = asyncio.run(workspace.bulk_drafts(startup, icp, make_leads(3)))

        assert report.written == ["l-0"]
        assert report.throttled is True
        assert report.retry_after_ms == 15000
        assert gemini.generate_outbound_draft.await_count == 2

    @pytest.mark.unit
    def test_other_failures_continue(self, workspace, gemini, startup, icp):
        """Test that a failing lead is recorded and the run moves on."""
        gemini.generate_outbound_draft.side_effect = [
            ValueError("bad answer"),
            {"subject": "B", "body": "b"},
        ]

        report = asyncio.run(workspace.bulk_drafts(startup, icp, make_leads(2)))

        assert report.failed == {"l-0": "bad answer"}
        assert report.written == ["l-1"]
        assert report.throttled is False


class TestNextAction:
    """Tests for next action suggestions."""

    NOW = datetime(2026, 3, 1, tzinfo=timezone.utc)

    @pytest.mark.unit
    def test_never_touched_is_stalled(self):
        """Test that a lead without a last touch is stalled."""
        action = next_action(Lead(id="l-1"), now=self.NOW)
        assert action.label == "Stalled: Bump Now"
        assert action.urgent is True

    @pytest.mark.unit
    def test_stalled_after_a_week(self):
        """Test that eight quiet days mark a lead as stalled."""
        lead = Lead(id="l-1", stage="Meeting", last_touch_at=self.NOW - timedelta(days=8))
        assert next_action(lead, now=self.NOW).label == "Stalled: Bump Now"

    @pytest.mark.unit
    def test_stage_action(self):
        """Test the suggestion for a recently touched lead."""
        lead = Lead(id="l-1", stage="Contacted", last_touch_at=self.NOW - timedelta(days=2))
        assert next_action(lead, now=self.NOW).label == "Follow Up (3d)"

    @pytest.mark.unit
    def test_proposal_is_urgent(self):
        """Test that proposals are flagged urgent."""
        lead = Lead(id="l-1", stage="Proposal", last_touch_at=self.NOW)
        action = next_action(lead, now=self.NOW)
        assert action.label == "Close / Sign"
        assert action.urgent is True

    @pytest.mark.unit
    def test_closed_lead_has_no_action(self):
        """Test that won leads need nothing."""
        lead = Lead(id="l-1", stage="Won", last_touch_at=self.NOW)
        assert next_action(lead, now=self.NOW) is None

    @pytest.mark.unit
    def test_naive_timestamp(self):
        """Test that naive timestamps are read as UTC."""
        lead = Lead(id="l-1", stage="Prospect", last_touch_at=datetime(2026, 2, 28))
        assert next_action(lead, now=self.NOW).label == "Research & Enrich"
