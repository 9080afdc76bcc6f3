"""Create a demo network for development/testing."""

import shutil
from pathlib import Path

from station_v.models import Actor, Channel, WritingStyle
from station_v.storage import Storage

DEMO_ACTORS = [
    Actor(name="nova", personality="curious",
          writing_style=WritingStyle(formality="casual", verbosity="moderate", emoji_usage="frequent")),
    Actor(name="glitch", personality="sarcastic", pm_probability=15,
          writing_style=WritingStyle(formality="ultra_casual", verbosity="terse", humor="dry")),
    Actor(name="mirela", personality="supportive", pm_probability=35,
          writing_style=WritingStyle(formality="formal", verbosity="verbose")),
    Actor(name="k0bold", personality="analytical",
          writing_style=WritingStyle(punctuation="minimal")),
    Actor(name="driftwood", personality="calm", pm_probability=10),
    Actor(name="sable", personality="mysterious", pm_probability=0,
          writing_style=WritingStyle(verbosity="terse", emoji_usage="none")),
    Actor(name="pixelpunk", personality="energetic",
          writing_style=WritingStyle(formality="ultra_casual", emoji_usage="excessive",
                                     punctuation="excessive")),
    Actor(name="oracle-bot", type="bot", personality="helpful"),
]

DEMO_CHANNELS = [
    Channel(name="#general", topic="Welcome to Station V! Be nice.",
            members=["nova", "glitch", "mirela", "oracle-bot"], operators=["mirela"]),
    Channel(name="#tech", topic="Code, hardware and the occasional rant",
            members=["k0bold", "pixelpunk"], operators=["k0bold"]),
    # Left empty: the scheduler auto-joins a few actors on its first tick.
    Channel(name="#random", topic="Anything goes"),
]


def create_demo_data(data_dir: Path) -> None:
    """Wipe existing network state and logs and write the demo network."""
    for name in ("actors.json", "channels.json"):
        (data_dir / name).unlink(missing_ok=True)
    if (data_dir / "logs").exists():
        shutil.rmtree(data_dir / "logs")

    storage = Storage(data_dir)
    storage.save_state(DEMO_ACTORS, DEMO_CHANNELS)
