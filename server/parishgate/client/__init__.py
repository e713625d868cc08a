"""Login form client: lock mirror, local throttle and lockout presenter."""

from parishgate.client.gateway import ApiLoginGateway, GatewayError, InProcessLoginGateway, LoginGateway
from parishgate.client.presenter import LockoutPresenter, PresenterView, SubmitResult
from parishgate.client.storage import JsonFileStorage, KeyValueStorage, MemoryStorage

__all__ = [
    "ApiLoginGateway",
    "GatewayError",
    "InProcessLoginGateway",
    "JsonFileStorage",
    "KeyValueStorage",
    "LockoutPresenter",
    "LoginGateway",
    "MemoryStorage",
    "PresenterView",
    "SubmitResult",
]
