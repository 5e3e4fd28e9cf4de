"""Error taxonomy for the budget risk and deal relevance engine."""


class SpendwiseError(Exception):
    """Base exception for the engine"""

    pass


class NotFoundError(SpendwiseError):
    """Referenced budget, itinerary or user does not exist"""

    pass


class InvalidInputError(SpendwiseError):
    """Input cannot be clamped to a safe value (e.g. malformed rule configuration)"""

    pass


class CollaboratorUnavailableError(SpendwiseError):
    """A deal source, notifier or persistence adapter failed"""

    def __init__(self, collaborator: str, message: str):
        super().__init__(f"{collaborator}: {message}")
        self.collaborator = collaborator
