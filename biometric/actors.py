class Actor:
    """
    Minimal caller identity for the service layer. Anything with ``id`` and
    ``has_permission(code)`` works, e.g. an authenticated user model.
    """

    def __init__(self, id, permissions=()):
        self.id = id
        self.permissions = set(permissions)

    def has_permission(self, permission_code):
        return "*" in self.permissions or permission_code in self.permissions

    def __repr__(self):
        return f"<Actor {self.id}>"


# Used by the CLI and background jobs
SYSTEM_ACTOR = Actor(None, permissions=("*",))
