import os

# Keep the app off disk and off the network during tests.
os.environ["RECOVERY_STORE"] = "memory"
os.environ.pop("OPENAI_API_KEY", None)

import pytest

from studygen.generate.recovery import RecoveryService
from studygen.storage import MemoryStore

VALID_KEY = "sk-test-" + "a1b2" * 8

WATER_CYCLE = """\
The water cycle is the continuous process that moves water between the oceans, the atmosphere and the land. It is one of the most important systems on Earth, because every living thing depends on a steady supply of fresh water. The cycle has no true starting point, but it is easiest to study it as a series of stages. Each stage is driven by energy from the sun and by the pull of gravity.

The first key stage is evaporation. Heat from the sun warms the surface of oceans, lakes and rivers, and liquid water turns into water vapor. The vapor rises into the atmosphere as an invisible gas. Oceans supply most of the vapor, because they cover more than two thirds of the planet. Warm and windy weather speeds up evaporation, while cold and still air slows it down.

Plants also add vapor to the air through a process called transpiration. Roots take up water from the soil, and the water moves up through the stems to the leaves. Small openings in the leaves, called stomata, release the vapor into the air. A large tree can release hundreds of liters of water on a single summer day. Scientists often combine evaporation and transpiration into one term, evapotranspiration.

The second stage is condensation. As water vapor rises, the air around it cools. Cool air cannot hold as much vapor as warm air, so the vapor condenses into tiny liquid droplets around specks of dust, salt or smoke. Billions of these droplets gather together and form clouds. Fog is simply a cloud that forms close to the ground. Condensation also explains the dew that appears on grass on a cool morning.

The third stage is precipitation. Inside a cloud, droplets collide and merge until they become too heavy to stay in the air. They then fall to the ground as rain. When the temperature is below freezing, the water falls as snow, sleet or hail instead. Precipitation returns fresh water from the atmosphere to the land and the oceans, and it is the main source of water for rivers and lakes.

After precipitation reaches the ground, the water follows several paths. Some of it flows over the surface as runoff and collects in streams, rivers and eventually the oceans. Some of it soaks into the soil through infiltration. Water that infiltrates deeply becomes groundwater and is stored in layers of rock and sand called aquifers. Groundwater can stay underground for thousands of years before it seeps back into rivers or the sea. In cold regions, water may also be stored for a long time as ice in glaciers and snow packs, which melt slowly in spring.

Understanding the water cycle is important for farming, for planning city water supplies and for predicting floods and droughts. For example, heavy precipitation on dry, hard soil produces more runoff and can cause flooding. Changes in temperature also affect the cycle, because warmer air holds more vapor and can lead to stronger storms.
"""


class RecordedSleep:
    """Stands in for asyncio.sleep and remembers every delay."""

    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


class StubClient:
    """
    Model client that replays queued responses in order.
    The last item repeats once the queue runs out; exceptions are raised.
    """

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    async def call(self, payload, context="API Call"):
        self.calls.append((payload, context))
        item = self.responses[min(len(self.calls), len(self.responses)) - 1]
        if isinstance(item, BaseException):
            raise item
        return item


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def sleeper():
    return RecordedSleep()


@pytest.fixture
def recovery(store, sleeper):
    return RecoveryService(store, sleep=sleeper)


@pytest.fixture
def stub():
    return StubClient


@pytest.fixture
def water_cycle():
    return WATER_CYCLE


@pytest.fixture
def valid_key():
    return VALID_KEY
