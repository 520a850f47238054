# run.py
# Entry point. Config and wiring only, no logic lives here.
#
#   flyspace [scripts_dir]
#
# Everything else comes from the environment; see config.py.

import asyncio
import sys

from pydantic import ValidationError

from flyspace import display
from flyspace.bus import CommandBus
from flyspace.config import Settings
from flyspace.discovery import find_matching_exports
from flyspace.driver import launch_stagehand, open_cdp_session
from flyspace.registry import Registry
from flyspace.relay import FrameRelay
from flyspace.sandbox import ScriptSandbox
from flyspace.server import Transport


async def serve(settings: Settings) -> None:
    files = find_matching_exports(settings.scripts_dir)
    display.banner(settings.host, settings.port, settings.scripts_dir)
    display.scripts_discovered(files)

    bus = CommandBus()
    registry = Registry(bus)

    stagehand = await launch_stagehand(settings)
    session = await open_cdp_session(stagehand)
    relay = FrameRelay(session, bus, settings.screencast_format, settings.screencast_quality)
    await relay.start()

    sandbox = ScriptSandbox(registry, bus, stagehand)
    transport = Transport(registry, bus, files)
    try:
        await transport.serve(settings.host, settings.port)
    finally:
        sandbox.close()
        await relay.stop()
        await stagehand.close()


def main() -> None:
    scripts_dir = sys.argv[1] if len(sys.argv) > 1 else None
    try:
        settings = Settings.from_env(scripts_dir)
    except ValidationError as exc:
        display.settings_invalid(exc)
        sys.exit(1)

    try:
        asyncio.run(serve(settings))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
