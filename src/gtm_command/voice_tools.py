# voice_tools.py
"""Function tools exposed to the voice assistant."""

from typing import Any, Dict, Optional

from .logging_utils import get_logger
from .throttle import is_throttle_rejection

logger = get_logger(__name__)

TOOL_COUNT_LEADS = {
    "name": "count_leads",
    "description": "Count the total number of leads in the database, optionally filtered by stage.",
    "parameters": {
        "type": "OBJECT",
        "properties": {
            "stage": {
                "type": "STRING",
                "description": "The stage to filter by (e.g., 'Prospect', 'Contacted'). Optional.",
            },
        },
    },
}

TOOL_GET_RECENT_LEADS = {
    "name": "get_recent_leads",
    "description": "Get a list of the most recently updated leads.",
    "parameters": {
        "type": "OBJECT",
        "properties": {
            "limit": {
                "type": "NUMBER",
                "description": "Number of leads to return (default 5).",
            },
        },
    },
}

TOOL_CREATE_NOTE = {
    "name": "create_quick_note",
    "description": "Create a generic note or idea. Useful when the user wants to remember something quickly.",
    "parameters": {
        "type": "OBJECT",
        "properties": {
            "content": {
                "type": "STRING",
                "description": "The content of the note.",
            },
        },
        "required": ["content"],
    },
}

VOICE_TOOLS = [
    {"functionDeclarations": [TOOL_COUNT_LEADS, TOOL_GET_RECENT_LEADS, TOOL_CREATE_NOTE]}
]

DEFAULT_RECENT_LIMIT = 5


async def execute_voice_tool(
    data_client,
    name: str,
    args: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Execute a voice tool call and return a JSON-serializable response.

    Failures are returned as ``{"error": ...}`` so the assistant can speak
    them; throttle rejections also carry ``retry_after_ms``.

    Args:
        data_client: A ``DataClient`` or ``GuardedDataClient``.
        name: Tool name from ``VOICE_TOOLS``.
        args: Tool arguments.
    """
    args = args or {}
    logger.info("Executing voice tool", extra={"tool": name, "args": args})

    try:
        if name == "count_leads":
            query = data_client.table("leads").select("*", count="exact", head=True)
            if args.get("stage"):
                query = query.eq("stage", args["stage"])
            result = (await query.execute()).raise_for_error()
            return {"count": result.count or 0, "filter": args.get("stage") or "all"}

        if name == "get_recent_leads":
            limit = int(args.get("limit") or DEFAULT_RECENT_LIMIT)
            result = (
                await data_client.table("leads")
                .select("contact_name, company_name, stage, icp_fit")
                .order("updated_at", desc=True)
                .limit(limit)
                .execute()
            ).raise_for_error()
            return {"leads": result.data}

        if name == "create_quick_note":
            # TODO: persist notes once quick notes get their own table
            return {"status": "success", "message": "Note saved to your log (simulated)."}

        return {"error": "Unknown tool"}

    except Exception as e:
        if is_throttle_rejection(e):
            logger.warning(f"Voice tool throttled: {e}", extra={"tool": name})
            return {"error": str(e), "retry_after_ms": getattr(e, "retry_after_ms", 0)}
        logger.error(f"Voice tool failed: {e}", extra={"tool": name})
        return {"error": str(e)}
