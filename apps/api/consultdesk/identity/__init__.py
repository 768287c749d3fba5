from consultdesk.identity.models import User

__all__ = ["User"]
