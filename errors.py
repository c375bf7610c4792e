# errors.py
# Failure kinds raised inside the relay core. Everything surfaced to a
# sender is reduced to ok/False plus an opaque message by gateway.py or
# relay_recv.py.


class RelayError(Exception):
    """Base for every failure the relay core can signal."""


class MissingField(RelayError):
    def __init__(self, field: str):
        super().__init__(f"Parameter {field} is missing")
        self.field = field


class DecodeError(RelayError):
    pass


class IncompleteBundle(RelayError):
    pass


class HashMismatch(RelayError):
    def __init__(self, expected: str, computed: str):
        super().__init__(f"txid mismatch: expected {expected}, got {computed}")
        self.expected = expected
        self.computed = computed


class InternalInconsistency(RelayError):
    pass


class NoBackendAvailable(RelayError):
    pass


class PushExhausted(RelayError):
    def __init__(self, attempts: int):
        super().__init__(f"Failed to push a transaction after {attempts} attempt(s)")
        self.attempts = attempts


class ConfigError(RelayError):
    pass
