"""Common exceptions
"""


class DexStateError(Exception):
    """A base class for dexstate exceptions"""

    def __init__(self, *args, **data):
        super(DexStateError, self).__init__(*args)
        if hasattr(self, "message_fmt"):
            self.message = getattr(self, "message_fmt").format(*args, self=self)
        self.__dict__.update(data)

    def __str__(self):
        if getattr(self, "message", None):
            return "{}".format(self.message)
        else:
            return super(DexStateError, self).__str__()


class MalformedIdentifier(DexStateError, ValueError):
    """Serialized identifier has a wrong length or an unknown tag."""


class MalformedValue(DexStateError, ValueError):
    """Stored bytes cannot be decoded as the declared value type."""


class TruncatedEvent(DexStateError):
    """Event payload is shorter (or longer) than its schema requires."""

    message_fmt = "event payload truncated at offset {self.offset}: {0}"

    def __init__(self, reason, offset=0):
        self.offset = offset
        super(TruncatedEvent, self).__init__(reason, offset=offset)


class NoActiveVersion(DexStateError):
    """Package has no enabled contract version."""

    message_fmt = "package {0} has no active contract version"


class NodeRpcError(DexStateError):
    """Node answered a JSON-RPC call with an error object."""

    message_fmt = "{0} failed with code {self.code}: {self.rpc_message}"

    def __init__(self, method, code=None, rpc_message="", data=None):
        self.code = code
        self.rpc_message = rpc_message
        self.data = data
        super(NodeRpcError, self).__init__(method, code=code, rpc_message=rpc_message, data=data)


class TransactionFailure(DexStateError):
    """Transaction reached a terminal failure status.

    The message is the node's error message, unmodified.
    """

    def __init__(self, message, transaction_hash=None):
        super(TransactionFailure, self).__init__(message, transaction_hash=transaction_hash)


class FinalityTimeout(DexStateError):
    """No terminal status was observed within the polling bound."""

    message_fmt = "transaction {0} did not reach a terminal status after {self.attempts} polls"

    def __init__(self, transaction_hash, attempts=0):
        self.attempts = attempts
        super(FinalityTimeout, self).__init__(transaction_hash, attempts=attempts)


class DeploymentError(DexStateError):
    """A deployment step could not be completed."""

    message_fmt = "{0}: {1}"

    def __init__(self, step, reason, kind="failure"):
        super(DeploymentError, self).__init__(step, reason, step=step, reason=reason, kind=kind)


class ManifestError(DexStateError, ValueError):
    """Manifest entry violates the name/hash format."""
