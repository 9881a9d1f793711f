"""Console entry point of the PressLog companion."""

from __future__ import annotations

import logging
import sys
from typing import Iterable, TextIO

from presslog.utils import format_duration

from .api_client import ApiClient, ApiError
from .config import load_config
from .models import ClientTimer
from .ticker import TimerTicker

logger = logging.getLogger(__name__)

BAR_WIDTH = 20


def render_timer(timer: ClientTimer) -> str:
    """One status line, e.g. ``Fed Cat  [##########----------]  50%  6h ready``."""
    filled = int(round(timer.progress / 100 * BAR_WIDTH))
    bar = "#" * filled + "-" * (BAR_WIDTH - filled)
    if timer.last_pressed is None:
        since = "never pressed"
    elif timer.show_total_seconds:
        since = f"{timer.elapsed_time}s"
    else:
        since = format_duration(timer.elapsed_time, compact=True)
    state = "ready" if timer.is_pressable else "wait"
    return f"{timer.label:<24} [{bar}] {timer.progress:5.1f}%  {since:<14} {state}"


def render(timers: Iterable[ClientTimer], stream: TextIO = sys.stdout) -> None:
    for timer in timers:
        if timer.is_enabled and not timer.is_archived:
            stream.write(render_timer(timer) + "\n")
    stream.write("\n")
    stream.flush()


def main() -> None:
    """Poll the API and print every timer once per tick until interrupted."""

    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    config = load_config()
    if not config.api_token:
        sys.exit("PRESSLOG_API_TOKEN is not set")

    api_client = ApiClient(config.api_base_url, token=config.api_token)
    ticker = TimerTicker(
        api_client,
        tick_seconds=config.tick_seconds,
        refetch_seconds=config.refetch_seconds,
        on_update=render,
    )

    try:
        api_client.list_timers()
    except ApiError as exc:
        sys.exit(f"API error: {exc}")

    ticker.start()
    try:
        while ticker.is_running:
            ticker.wait(1.0)
    except KeyboardInterrupt:
        pass
    finally:
        ticker.stop()


__all__ = ["main", "render", "render_timer"]
