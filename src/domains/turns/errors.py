"""Domain errors for turn assignment and the turn lifecycle.

Every error is a caller-correctable validation failure. Each one also
inherits the builtin exception the HTTP boundary maps to a status code:
``ValueError`` for invalid state, ``PermissionError`` for ownership and role
checks, ``LookupError`` for unknown strategies and records.
"""


class TurnDomainError(Exception):
    """Base class for all turn domain errors."""

    code: str = "turn_domain_error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message()
        super().__init__(self.message)

    def default_message(self) -> str:
        return self.code.replace("_", " ")


class NotAMember(TurnDomainError, PermissionError):
    code = "not_a_member"

    def default_message(self) -> str:
        return "User is not an active member of this group"


class AlreadyAMember(TurnDomainError, ValueError):
    code = "already_a_member"

    def default_message(self) -> str:
        return "User is already a member of this group"


class GroupNotActive(TurnDomainError, ValueError):
    code = "group_not_active"

    def default_message(self) -> str:
        return "Group is not active"


class TurnAlreadyActive(TurnDomainError, ValueError):
    code = "turn_already_active"

    def default_message(self) -> str:
        return "There is already an active turn in this group"


class NotYourTurn(TurnDomainError, ValueError):
    code = "not_your_turn"

    def default_message(self) -> str:
        return "It is not your turn"


class NotTurnOwner(TurnDomainError, PermissionError):
    code = "not_turn_owner"

    def default_message(self) -> str:
        return "Only the turn owner can end this turn"


class TurnNotActive(TurnDomainError, ValueError):
    code = "turn_not_active"

    def default_message(self) -> str:
        return "Turn is not active"


class NotAuthorized(TurnDomainError, PermissionError):
    code = "not_authorized"

    def default_message(self) -> str:
        return "Not authorized to perform this action"


class UnknownStrategy(TurnDomainError, LookupError):
    code = "unknown_strategy"

    def __init__(self, name: str) -> None:
        self.strategy_name = name
        super().__init__(f"Turn assignment strategy '{name}' not found")


class InvalidConfiguration(TurnDomainError, ValueError):
    code = "invalid_configuration"


class GroupNotFound(TurnDomainError, LookupError):
    code = "group_not_found"

    def __init__(self, group_id: str) -> None:
        self.group_id = group_id
        super().__init__(f"Group '{group_id}' not found")


class TurnNotFound(TurnDomainError, LookupError):
    code = "turn_not_found"

    def __init__(self, turn_id: str) -> None:
        self.turn_id = turn_id
        super().__init__(f"Turn '{turn_id}' not found")
