"""Exception types raised by loopit."""


class InvalidInputError(ValueError):
    """Input outside the contract of a transform (empty, out of [0, 1], bad counts)."""


class ArtifactError(ValueError):
    """A loaded observation table or draw matrix is malformed."""
