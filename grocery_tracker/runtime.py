"""Wires settings, channels, dispatcher, aggregator, jobs and scheduler together."""

from dataclasses import dataclass
from zoneinfo import ZoneInfo

from grocery_tracker.config import Settings
from grocery_tracker.core.analytics import Aggregator
from grocery_tracker.core.channels import ChannelSender
from grocery_tracker.core.dispatcher import NotificationDispatcher
from grocery_tracker.core.jobs import ExpiryJobs, build_scheduler
from grocery_tracker.core.scheduler import Scheduler


@dataclass
class Services:
    settings: Settings
    tz: ZoneInfo
    channels: ChannelSender
    aggregator: Aggregator
    dispatcher: NotificationDispatcher
    jobs: ExpiryJobs
    scheduler: Scheduler


def build_services(settings: Settings, clock=None, channels=None) -> Services:
    """Build the engine. Raises ZoneInfoNotFoundError for an unknown TIMEZONE."""
    tz = ZoneInfo(settings.timezone)
    channels = channels or ChannelSender(settings)
    aggregator = Aggregator(tz=tz, clock=clock)
    dispatcher = NotificationDispatcher(channels, tz=tz, clock=clock, aggregator=aggregator)
    jobs = ExpiryJobs(dispatcher, settings)
    scheduler = build_scheduler(jobs, tz, clock=clock)
    return Services(
        settings=settings,
        tz=tz,
        channels=channels,
        aggregator=aggregator,
        dispatcher=dispatcher,
        jobs=jobs,
        scheduler=scheduler,
    )
