class PortalError(Exception):
    """Base class for the portal's own failures."""


class ExcessiveDepth(PortalError):
    """A category ancestor chain is deeper than the configured limit (likely a cycle)."""

    def __init__(self, category_id, depth_limit):
        self.category_id = category_id
        self.depth_limit = depth_limit
        super().__init__(
            f"Category {category_id} has more than {depth_limit} levels of ancestors"
        )


class InvalidUrlGeneration(PortalError):
    """The URL builder returned something that is not an absolute URL."""

    def __init__(self, link):
        self.link = link
        super().__init__(f"Generated URL is not absolute: {link!r}")


class CategoryNotFound(PortalError, LookupError):
    def __init__(self, category_id):
        self.category_id = category_id
        super().__init__(f"Category {category_id} does not exist")


class StorageError(PortalError):
    """A storage backend failed for a reason other than a missing file."""
