"""Domain exceptions shared by services, tasks and routes."""


class ChatOrderError(Exception):
    """Base class for application errors."""


class ConfigurationError(ChatOrderError):
    """Required credentials or configuration are missing.

    Raised before any state change so the operation can be aborted cleanly.
    """


class SheetsConfigurationError(ConfigurationError):
    """Google service account credentials are not configured."""


class SyncConfigurationError(ConfigurationError):
    """The store has no spreadsheet to sync from."""


class SyncRateLimitedError(ChatOrderError):
    """A catalog sync for this store started inside the cooldown window."""

    def __init__(self, store_id: object, cooldown_seconds: int) -> None:
        super().__init__(f"Catalog sync for store {store_id} is cooling down")
        self.store_id = store_id
        self.cooldown_seconds = cooldown_seconds


class LockNotAcquiredError(ChatOrderError):
    """A keyed mutex could not be acquired within the wait timeout."""

    def __init__(self, key: str) -> None:
        super().__init__(f"Could not acquire lock {key}")
        self.key = key


class UnknownCatalogItemsError(ChatOrderError):
    """Order items that do not match any active product."""

    def __init__(self, names: list[str]) -> None:
        super().__init__(f"Unknown catalog items: {', '.join(names)}")
        self.names = names


class ExternalServiceError(ChatOrderError):
    """An external collaborator (Sheets, QPay, Graph API) returned an error."""


class OrderStateError(ChatOrderError):
    """The order is not in a status that allows the requested action."""

    def __init__(self, order_id: object, current: str, action: str) -> None:
        super().__init__(f"Cannot {action} order {order_id} in status {current}")
        self.order_id = order_id
        self.current = current
        self.action = action
