# gemini_client.py
"""Generative Language REST client for GTM strategy and lead intelligence.

Every GTM operation is admitted by the request governor under its own action
identifier before the API is called, so a throttled operation raises
``GuardedCallError`` without spending a request.
"""

import asyncio
import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .config import config
from .logging_utils import get_logger
from .models import ExpansionDirection, ICPProfile, Lead, Startup
from .throttle import RequestGovernor
from .throttle import policies

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"

GTM_SYSTEM_INSTRUCTION = """
You are GTM Command Center, an expert Go-To-Market strategist.
You produce complete GTM strategies, ICP definitions, messaging frameworks and outbound content.
Your output is always structured, professional and actionable.
"""

MARKET_RESEARCH_INSTRUCTION = "You are a market researcher. Provide up-to-date information."


class GeminiError(Exception):
    """Base exception for Gemini client errors."""

    pass


class GeminiNotConfiguredError(GeminiError):
    """Raised when no API key is available."""

    pass


class GeminiAuthError(GeminiError):
    """Raised when the API rejects the credentials."""

    pass


class GeminiRequestError(GeminiError):
    """Raised when the request fails in transport or with an HTTP error."""

    pass


class GeminiResponseError(GeminiError):
    """Raised when the response is empty, malformed or not the expected JSON."""

    pass


@dataclass
class GroundingSource:
    """A web page the model used to ground its answer."""

    title: str
    uri: str

    def to_dict(self) -> Dict[str, str]:
        return {"title": self.title, "uri": self.uri}


@dataclass
class GenerationResult:
    """Text produced by one generateContent call."""

    text: str
    sources: List[GroundingSource] = field(default_factory=list)


def clean_json(text: Optional[str]) -> str:
    """Strip markdown fences and surrounding prose from a JSON answer.

    Returns the outermost object or array found, whichever starts first.
    Empty input yields ``"{}"``.
    """
    if not text:
        return "{}"

    cleaned = text.strip()
    cleaned = re.sub(r"^```json", "", cleaned, flags=re.IGNORECASE)
    cleaned = re.sub(r"^```", "", cleaned)
    cleaned = re.sub(r"```$", "", cleaned)

    first_brace = cleaned.find("{")
    last_brace = cleaned.rfind("}")
    first_bracket = cleaned.find("[")
    last_bracket = cleaned.rfind("]")

    if first_brace != -1 and last_brace != -1 and (
        first_bracket == -1 or first_brace < first_bracket
    ):
        cleaned = cleaned[first_brace:last_brace + 1]
    elif first_bracket != -1 and last_bracket != -1:
        cleaned = cleaned[first_bracket:last_bracket + 1]

    return cleaned.strip()


class GeminiClient:
    """Generative Language API client wrapper for GTM Command Center.

    Uses the REST API directly via requests. Blocking calls run in the
    default executor so callers can await them.

    Attributes:
        model: Default model for generation.
        strategy_model: Model used for deep strategy generation.
        governor: Optional request governor admitting each GTM operation.

    Example:
        >>> client = GeminiClient(governor=create_governor())
        >>> strategy = await client.generate_deep_strategy("Acme", "...", "US", "SMB", "CRM")
    """

    DEFAULT_TIMEOUT = 60

    MAX_RETRIES = 3

    BASE_RETRY_DELAY = 1.0

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        strategy_model: Optional[str] = None,
        governor: Optional[RequestGovernor] = None,
        timeout: Optional[int] = None,
        thinking_budget: Optional[int] = None,
    ):
        """Initialize the Gemini client.

        Args:
            api_key: API key. Defaults to config value.
            model: Default model name. Defaults to config value.
            strategy_model: Model for deep strategy. Defaults to config value.
            governor: Request governor. Operations are unguarded without one.
            timeout: Request timeout in seconds.
            thinking_budget: Thinking token budget for deep strategy.
        """
        self.logger = get_logger(__name__)

        self._api_key = api_key if api_key is not None else config.GEMINI_API_KEY
        self.model = model or config.GEMINI_MODEL
        self.strategy_model = strategy_model or config.GEMINI_STRATEGY_MODEL
        self.governor = governor
        self.timeout = timeout or config.GEMINI_TIMEOUT_SECONDS or self.DEFAULT_TIMEOUT
        self.thinking_budget = (
            thinking_budget if thinking_budget is not None else config.GEMINI_THINKING_BUDGET
        )

        self._session: Optional[requests.Session] = None

    def _get_session(self) -> requests.Session:
        """Get or create a requests session with retry configuration."""
        if self._session is None:
            self._session = requests.Session()

            retry_strategy = Retry(
                total=self.MAX_RETRIES,
                backoff_factor=self.BASE_RETRY_DELAY,
                status_forcelist=[429, 500, 502, 503, 504],
                allowed_methods=["POST"],
            )
            adapter = HTTPAdapter(max_retries=retry_strategy)
            self._session.mount("https://", adapter)
            self._session.mount("http://", adapter)

        return self._session

    def _build_payload(
        self,
        prompt: str,
        system_instruction: Optional[str] = None,
        use_search: bool = False,
        response_mime_type: Optional[str] = None,
        thinking_budget: Optional[int] = None,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
        }

        if system_instruction:
            payload["systemInstruction"] = {"parts": [{"text": system_instruction}]}

        if use_search:
            payload["tools"] = [{"google_search": {}}]

        generation_config: Dict[str, Any] = {}
        if response_mime_type:
            generation_config["responseMimeType"] = response_mime_type
        if thinking_budget:
            generation_config["thinkingConfig"] = {"thinkingBudget": thinking_budget}
        if generation_config:
            payload["generationConfig"] = generation_config

        return payload

    def _make_request_sync(self, model: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Make a blocking generateContent request.

        Raises:
            GeminiNotConfiguredError: If no API key is configured.
            GeminiAuthError: If the API rejects the credentials.
            GeminiRequestError: On transport or HTTP failure.
            GeminiResponseError: If the body is not JSON.
        """
        if not self._api_key:
            raise GeminiNotConfiguredError(
                "Gemini API key required. Set GEMINI_API_KEY environment variable "
                "or pass api_key parameter."
            )

        url = f"{GEMINI_BASE_URL}/models/{model}:generateContent"
        headers = {
            "Content-Type": "application/json",
            "x-goog-api-key": self._api_key,
        }

        self.logger.debug(
            "Making Gemini API request",
            extra={"model": model, "tools": bool(payload.get("tools"))},
        )

        try:
            response = self._get_session().post(
                url,
                headers=headers,
                json=payload,
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            self.logger.error(f"Gemini API request failed: {e}", extra={"model": model})
            raise GeminiRequestError(f"Request failed: {e}") from e

        if response.status_code in (401, 403):
            raise GeminiAuthError("Invalid API key or unauthorized access")
        if response.status_code >= 400:
            self.logger.error(
                "Gemini API returned an error",
                extra={
                    "model": model,
                    "status_code": response.status_code,
                    "response_text": response.text[:500],
                },
            )
            raise GeminiRequestError(
                f"API error {response.status_code}: {response.text[:500]}"
            )

        try:
            return response.json()
        except ValueError as e:
            raise GeminiResponseError(f"Invalid JSON in API response: {e}") from e

    async def _make_request(self, model: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(
            None,
            lambda: self._make_request_sync(model, payload),
        )

    @staticmethod
    def _parse_result(result: Dict[str, Any]) -> GenerationResult:
        candidates = result.get("candidates") or []
        if not candidates:
            return GenerationResult(text="")

        candidate = candidates[0]
        parts = (candidate.get("content") or {}).get("parts") or []
        text = "".join(part.get("text", "") for part in parts if not part.get("thought"))

        sources = []
        grounding = candidate.get("groundingMetadata") or {}
        for chunk in grounding.get("groundingChunks") or []:
            web = chunk.get("web")
            if web:
                sources.append(GroundingSource(title=web.get("title", ""), uri=web.get("uri", "")))

        return GenerationResult(text=text, sources=sources)

    async def generate_content(
        self,
        prompt: str,
        model: Optional[str] = None,
        system_instruction: Optional[str] = None,
        use_search: bool = False,
        response_mime_type: Optional[str] = None,
        thinking_budget: Optional[int] = None,
    ) -> GenerationResult:
        """Submit a prompt and return the generated text and grounding sources.

        This call is not governed; the GTM operations below are.
        """
        model = model or self.model
        payload = self._build_payload(
            prompt,
            system_instruction=system_instruction,
            use_search=use_search,
            response_mime_type=response_mime_type,
            thinking_budget=thinking_budget,
        )
        result = await self._make_request(model, payload)
        return self._parse_result(result)

    async def _generate(self, action_id: str, prompt: str, **kwargs: Any) -> GenerationResult:
        generate = self.generate_content
        if self.governor is not None:
            generate = self.governor.wrap_guarded(generate, action_id)
        return await generate(prompt, **kwargs)

    def _parse_json(self, text: str, default: str) -> Any:
        try:
            return json.loads(clean_json(text or default))
        except json.JSONDecodeError as e:
            self.logger.error(
                f"Failed to parse JSON response: {e}",
                extra={"content": (text or "")[:500]},
            )
            raise GeminiResponseError(f"Invalid JSON in response: {e}") from e

    async def search_market_analysis(self, query: str) -> Dict[str, Any]:
        """Research a market question with search grounding.

        Returns:
            Dictionary with ``text`` and ``sources`` (title/uri dicts).
        """
        result = await self._generate(
            policies.MARKET_RESEARCH,
            query,
            system_instruction=MARKET_RESEARCH_INSTRUCTION,
            use_search=True,
        )
        return {
            "text": result.text or "No analysis generated.",
            "sources": [source.to_dict() for source in result.sources],
        }

    async def generate_deep_strategy(
        self,
        startup_name: str,
        startup_notes: str,
        region: str,
        focus_segment: str,
        product_description: str,
        direction: Optional[ExpansionDirection] = None,
    ) -> Dict[str, Any]:
        """Generate a full GTM strategy (ICP, market, messaging, outbound)."""
        if direction == ExpansionDirection.FRANCE_TO_US:
            direction_context = "Expanding from France/Europe to the USA."
        elif direction == ExpansionDirection.US_TO_FRANCE:
            direction_context = "Expanding from the USA to France/Europe."
        else:
            direction_context = "General expansion."

        prompt = f"""
Analyze the following startup in depth and define its full GTM strategy.

Startup: {startup_name}
Context: {startup_notes}
Target Region: {region}
Expansion Direction: {direction_context}
Focus Segment: {focus_segment}
Product: {product_description}

Output pure JSON covering ICP, market summary, competitors, risks, messaging and outbound.
"""

        self.logger.info(
            "Generating deep strategy",
            extra={"startup": startup_name, "region": region},
        )

        result = await self._generate(
            policies.DEEP_STRATEGY,
            prompt,
            model=self.strategy_model,
            system_instruction=GTM_SYSTEM_INSTRUCTION,
            response_mime_type="application/json",
            thinking_budget=self.thinking_budget,
        )
        return self._parse_json(result.text, "{}")

    async def generate_boolean_search(self, icp: ICPProfile) -> List[str]:
        """Generate boolean search strings for sales prospecting tools."""
        prompt = f"""
Based on this ICP, generate 5 boolean search strings for LinkedIn Sales Navigator.
ICP Persona: {json.dumps(icp.icp_persona)}
ICP Company: {json.dumps(icp.icp_company)}
Region: {icp.region}

Output a valid JSON array of strings: ["string1", "string2"]
"""
        result = await self._generate(
            policies.BOOLEAN_SEARCH,
            prompt,
            response_mime_type="application/json",
        )
        queries = self._parse_json(result.text, "[]")
        return [str(query) for query in queries] if isinstance(queries, list) else []

    async def find_prospects(self, icp: ICPProfile) -> List[Dict[str, Any]]:
        """Find real companies matching the ICP using search grounding."""
        prompt = f"""
Find 5 real companies in {icp.region} that match this ICP:
Segment: {icp.key_segments}
Criteria: {json.dumps(icp.icp_company)}

Use Google Search to find ACTUAL companies.
Return ONLY a valid JSON array, without markdown formatting.
Example: [{{"company_name": "Acme", "website": "acme.com", "industry": "Tech", "account_summary": "Fits because..."}}]
"""
        # Structured output is not available together with search tools
        result = await self._generate(policies.AUTO_PROSPECT, prompt, use_search=True)
        prospects = self._parse_json(result.text, "[]")
        return prospects if isinstance(prospects, list) else []

    async def enrich_lead(
        self,
        lead: Lead,
        startup: Startup,
        icp: Optional[ICPProfile] = None,
    ) -> Dict[str, Any]:
        """Generate account summary, hook, pain hypothesis and ICP fit for a lead."""
        prompt = f"""
Generate sales insights for this lead:
Lead: {lead.contact_name}, {lead.title} at {lead.company_name}
Startup: {startup.name} ({startup.notes})
ICP Context: {icp.name if icp else 'General'}

Output JSON: {{"account_summary": "...", "personalized_hook": "...", "pain_hypothesis": "...", "icp_fit": "High/Medium/Low"}}
"""
        result = await self._generate(
            policies.LEAD_ENRICHMENT,
            prompt,
            response_mime_type="application/json",
        )
        return self._parse_json(result.text, "{}")

    async def enrich_lead_with_live_search(self, lead: Lead) -> Dict[str, Any]:
        """Fetch funding, tech stack, news and hiring signals for a lead's company."""
        prompt = f"""
Find recent news, funding status, tech stack and active hiring roles for {lead.company_name}.
Return a valid JSON object with keys: funding_status, tech_stack (array of strings), recent_news, hiring_trends, account_summary.
Do not use markdown.
"""
        result = await self._generate(policies.LIVE_ENRICHMENT, prompt, use_search=True)
        return self._parse_json(result.text, "{}")

    async def verify_location(self, company_name: str, country_hint: str) -> Dict[str, Any]:
        """Check where a company is headquartered against a country hint."""
        prompt = f"""
Where is the HQ of {company_name}? Check whether it matches {country_hint}.
Return valid JSON: {{"text": "...", "mapLink": "..."}}
Do not use markdown.
"""
        result = await self._generate(policies.LOCATION_VERIFY, prompt, use_search=True)
        return self._parse_json(result.text, "{}")

    async def generate_outbound_draft(
        self,
        lead: Lead,
        startup: Startup,
        icp: ICPProfile,
        channel: str = "email",
    ) -> Dict[str, Any]:
        """Write an email or LinkedIn message for a lead.

        Returns:
            Dictionary with ``subject`` and ``body``.
        """
        prompt = f"""
Write a {channel} for {lead.contact_name} at {lead.company_name} on behalf of {startup.name}.
Value Prop: {icp.value_props}
Tone: Professional, direct.
Output JSON: {{"subject": "...", "body": "..."}}
"""
        result = await self._generate(
            policies.OUTBOUND_DRAFT,
            prompt,
            response_mime_type="application/json",
        )
        return self._parse_json(result.text, "{}")

    async def parse_lead_from_text(self, text: str) -> Dict[str, Any]:
        """Extract lead fields from clipped free text."""
        prompt = (
            f'Extract lead info from this text: "{text}". '
            "Output JSON using these keys: contact_name, title, email, linkedin_url, "
            "phone, company_name, website, hq_country, industry."
        )
        result = await self._generate(
            policies.PARSE_LEAD,
            prompt,
            response_mime_type="application/json",
        )
        return self._parse_json(result.text, "{}")

    def close(self) -> None:
        """Close the HTTP session and clean up resources."""
        if self._session:
            self._session.close()
            self._session = None
            self.logger.debug("Gemini client session closed")

    def __enter__(self) -> "GeminiClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
