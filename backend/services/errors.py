class NotFoundError(LookupError):
    """Raised when a habit, rule, routine, reminder or template does not exist."""


class InvalidTransitionError(ValueError):
    """Raised when a reminder state change would break the monotonic lifecycle."""


class InvalidRuleError(ValueError):
    """Raised when a rule payload is not a valid trigger/condition/action set."""


class TemplateNotFoundError(NotFoundError):
    """Raised when a routine template id is not in the built-in catalog."""
