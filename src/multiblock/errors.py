"""Exception taxonomy for the context engine.

Mutation paths raise; read paths (resolver, composer, sync) degrade to
empty contributions and log instead.
"""


class MultiblockError(Exception):
    """Base class for all engine errors."""


class OwnershipError(MultiblockError):
    """Actor does not own the board behind a block, connection or memory item."""

    def __init__(self, actor_id: str, resource: str):
        self.actor_id = actor_id
        self.resource = resource
        super().__init__(f"User {actor_id!r} may not modify {resource}")


class SelfLoopError(MultiblockError, ValueError):
    """A connection from a block to itself was requested."""

    def __init__(self, block_id: str):
        self.block_id = block_id
        super().__init__(f"Cannot connect block {block_id!r} to itself")


class NotFoundError(MultiblockError, KeyError):
    """A resource requested directly by id does not exist."""

    def __init__(self, kind: str, resource_id: str):
        self.kind = kind
        self.resource_id = resource_id
        super().__init__(f"{kind} not found: {resource_id}")

    def __str__(self) -> str:
        # KeyError would otherwise repr() the message
        return self.args[0]


class TransientFetchError(MultiblockError):
    """The backing store could not answer a lookup right now."""
