"""
Deal Report Narrator
====================
Turns a rendered deal report into a short written briefing for sales leadership
using the configured AI provider (Groq or Claude).

Narration is best effort: any provider or configuration failure is logged and
the report run carries on without a narrative.
"""

from __future__ import annotations

from typing import Any, Optional

from scripts.lib.ai_provider import ai_complete, default_provider, is_configured, log_ai_error
from scripts.lib.errors import AnalyticsError
from scripts.lib.logger import setup_logger
from scripts.report_renderer import render_report

logger = setup_logger("report_narrator")

SYSTEM_PROMPT = (
    "You are a sales operations analyst writing for a VP of Sales. "
    "Summarise the report you are given in at most five short bullet points, "
    "lead with the numbers that need action, name specific deals and owners "
    "where the report does, and do not invent figures that are not in the report."
)

REPORT_FOCUS = {
    "hygiene": "Focus on which CRM fields are most often missing and which deals need cleanup first.",
    "aging": "Focus on stalled deals, deals with no recent activity, and past-due close dates.",
    "forecast": "Focus on quarter ARR, how it splits across months and owners, and skipped deals.",
    "weekly": "Focus on weighted pipeline by stage and this week's closed won and lost.",
}


def build_prompt(report_type: str, rendered: str) -> str:
    focus = REPORT_FOCUS.get(report_type, "")
    return f"{focus}\n\n{rendered}".strip()


async def narrate_report(report_type: str, report: Any) -> Optional[str]:
    """Return narrative text for a report, or None when narration is unavailable."""
    if not is_configured():
        logger.warning("AI provider %s has no API key; skipping narration", default_provider())
        return None

    rendered = render_report(report_type, report)
    try:
        response = await ai_complete(
            task=f"narrate_{report_type}",
            system_prompt=SYSTEM_PROMPT,
            user_prompt=build_prompt(report_type, rendered),
        )
    except AnalyticsError as e:
        logger.warning("Narration for %s failed: %s", report_type, e)
        return None
    except Exception as e:
        logger.warning("Narration for %s failed (non-fatal): %s", report_type, e)
        log_ai_error(f"narrate_{report_type}", default_provider(), "", e)
        return None

    return response.content.strip() or None
