# driver.py
# Launching the browser-automation driver.
#
# The engine only relies on the driver surface: page.act / extract / observe /
# goto, a browser context, and a CDP session that emits screencast frames.
# The stagehand package provides all three; it is an optional dependency
# (`pip install flyspace[driver]`) and is imported only when launching.

from typing import Any

from flyspace.config import Settings


async def launch_stagehand(settings: Settings) -> Any:
    from stagehand import Stagehand, StagehandConfig

    config = StagehandConfig(
        env=settings.env,
        api_key=settings.browserbase_api_key,
        project_id=settings.browserbase_project_id,
        model_name=settings.model_name,
        model_api_key=settings.model_api_key,
        dom_settle_timeout_ms=settings.dom_settle_timeout_ms,
        local_browser_launch_options={"headless": settings.headless},
        verbose=1,
    )
    stagehand = Stagehand(config)
    await stagehand.init()
    await stagehand.page.goto("about:blank")
    return stagehand


async def open_cdp_session(stagehand: Any) -> Any:
    """CDP session bound to the driver's page, for the screencast."""
    # StagehandPage wraps the playwright page; playwright wants the raw one.
    raw_page = getattr(stagehand.page, "_page", stagehand.page)
    return await stagehand.context.new_cdp_session(raw_page)
