"""SQLAlchemy models: re-export all."""

from models.subject import Subject  # noqa: F401
from models.chat import Chat, Message  # noqa: F401
from models.checkpoint import ScanCheckpoint  # noqa: F401
from models.signal import SmallSignal, SmartDecision  # noqa: F401
from models.finding import Finding  # noqa: F401
from models.usage import ModelCallLog, UsageMeter  # noqa: F401
