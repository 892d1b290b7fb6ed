"""
Dramatiq broker setup for background encoding jobs.

Importing this package installs the broker globally, so actor modules must
import it before declaring actors.
"""
import dramatiq
from dramatiq.brokers.redis import RedisBroker
from dramatiq.brokers.stub import StubBroker
from dramatiq.middleware import AsyncIO, CurrentMessage

from pawfeed.config import settings

if settings.dramatiq_broker == "stub":
    broker = StubBroker()
else:
    broker = RedisBroker(url=settings.redis_url)

# AsyncIO runs the async def actors, CurrentMessage exposes the retry count
broker.add_middleware(AsyncIO())
broker.add_middleware(CurrentMessage())
dramatiq.set_broker(broker)

__all__ = ["broker"]
