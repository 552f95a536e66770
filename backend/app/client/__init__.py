from .call_state import (
    CallBackend,
    CallDirection,
    CallPhase,
    CallSession,
    CallStateError,
    CallStateMachine,
    EndReason,
    MediaError,
)
from .presence import PresenceMap
from .socket_client import ChatClient
from .typing_indicator import TypingNotifier, TypingState, TypingTracker
