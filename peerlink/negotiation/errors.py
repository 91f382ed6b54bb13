class NegotiationError(Exception):
    """Base class for failures surfaced by a negotiation session"""


class SequenceError(NegotiationError):
    """Operation invoked in a state that does not permit it"""

    def __init__(self, operation: str, state):
        super().__init__(f"Cannot {operation} while {state.value}")
        self.operation = operation
        self.state = state


class PayloadError(NegotiationError, ValueError):
    """Malformed offer, answer or candidate payload"""


class UnsupportedEnvironment(NegotiationError):
    """A required local capability (media source, codec) is unavailable"""
