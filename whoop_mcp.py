import logging
from functools import lru_cache
from typing import Awaitable, Optional

import httpx
from dotenv import load_dotenv
from mcp.server.fastmcp import FastMCP

import whoop_tools
from whoop_client import WhoopAPIError, WhoopClient, WhoopConfig

# Load environment variables from .env file
load_dotenv()

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Initialize FastMCP server
mcp = FastMCP("whoop")


@lru_cache(maxsize=None)
def get_client() -> WhoopClient:
    """Process-wide WHOOP client, built from the environment on first use."""
    return WhoopClient(WhoopConfig.from_env())


async def run_report(tool_name: str, report: Awaitable[str]) -> str:
    """Await a report, turning upstream and input failures into error text."""
    try:
        return await report
    except (WhoopAPIError, httpx.HTTPError, ValueError) as e:
        logger.error(f"{tool_name} failed: {e}")
        return f"Error: {e}"


@mcp.tool()
async def whoop_get_overview(date: Optional[str] = None) -> str:
    """Get the WHOOP home screen for a day: recovery, sleep, strain, HRV, activities and key stats.

    Args:
        date: Optional date in YYYY-MM-DD format. Defaults to today.
    """
    return await run_report("whoop_get_overview", whoop_tools.overview_report(get_client(), date))


@mcp.tool()
async def whoop_get_sleep(date: Optional[str] = None, days: Optional[int] = None, detail: Optional[str] = None) -> str:
    """Get sleep for one night, or sleep trends and patterns across several nights.

    A single night covers hours vs need, performance, consistency, efficiency,
    stage breakdown, disturbances and respiratory rate. With days > 1 the
    report averages the window and flags low performance and low deep sleep.

    Args:
        date: Optional end date in YYYY-MM-DD format. Defaults to the latest data.
        days: Number of nights to analyze (1-30). Defaults to 1.
        detail: 'summary' (default) or 'full' for the sleep need breakdown.
    """
    return await run_report("whoop_get_sleep", whoop_tools.sleep_report(get_client(), date, days, detail))


@mcp.tool()
async def whoop_get_recovery(date: Optional[str] = None, days: Optional[int] = None, detail: Optional[str] = None) -> str:
    """Get recovery for one day, or recovery trends across several days.

    Covers recovery score, HRV, resting heart rate, SpO2 and skin temperature.
    Multi-day reports flag repeated or consecutive low recovery and HRV trends.

    Args:
        date: Optional end date in YYYY-MM-DD format. Defaults to the latest data.
        days: Number of days to analyze (1-30). Defaults to 1.
        detail: 'summary' (default) or 'full' for contributors and coach insight.
    """
    return await run_report("whoop_get_recovery", whoop_tools.recovery_report(get_client(), date, days, detail))


@mcp.tool()
async def whoop_get_strain(date: Optional[str] = None, days: Optional[int] = None, detail: Optional[str] = None) -> str:
    """Get strain and activities for one day, or strain trends across several days.

    Multi-day reports flag high-strain streaks and windows without rest days.

    Args:
        date: Optional end date in YYYY-MM-DD format. Defaults to today.
        days: Number of days to analyze (1-30). Defaults to 1.
        detail: 'summary' (default) or 'full' for HR zones, distance and contributors.
    """
    return await run_report("whoop_get_strain", whoop_tools.strain_report(get_client(), date, days, detail))


@mcp.tool()
async def whoop_get_healthspan(detail: Optional[str] = None) -> str:
    """Get WHOOP Age and pace of aging.

    Args:
        detail: 'summary' (default) or 'full' to include health tab metrics.
    """
    return await run_report("whoop_get_healthspan", whoop_tools.healthspan_report(get_client(), detail))


@mcp.tool()
async def whoop_get_body() -> str:
    """Get body measurements: height, weight, BMI and max heart rate."""
    return await run_report("whoop_get_body", whoop_tools.body_report(get_client()))


@mcp.tool()
async def whoop_get_journal_insights() -> str:
    """Get which journaled behaviors help or hurt recovery."""
    return await run_report("whoop_get_journal_insights", whoop_tools.journal_report(get_client()))


@mcp.tool()
async def whoop_get_calendar(month: Optional[str] = None) -> str:
    """Get a month of recovery states as a calendar with weekday patterns.

    Args:
        month: Optional month in YYYY-MM format. Defaults to the current month.
    """
    return await run_report("whoop_get_calendar", whoop_tools.calendar_report(get_client(), month))


@mcp.tool()
async def whoop_check_connection() -> str:
    """Log in to WHOOP and report the account and token status."""
    return await run_report("whoop_check_connection", whoop_tools.connection_report(get_client()))


def main():
    mcp.run(transport='stdio')


if __name__ == "__main__":
    main()
