from enum import Enum

from .api import (
    Action,
    Capability,
    DeviceBusyError,
    DeviceChannel,
    Response,
    ResponseCallback,
)

__all__ = [
    "Action",
    "Capability",
    "DeviceBusyError",
    "DeviceChannel",
    "DeviceType",
    "Response",
    "ResponseCallback",
]


class DeviceType(Enum):
    """Device backends

    Examples:
        >>> DeviceType.Fake.value
        'fake'
    """

    Fake = "fake"

    @property
    def init_cls(self) -> type[DeviceChannel]:
        """Import while in use"""
        if self == DeviceType.Fake:
            from .fake import FakeDevice

            return FakeDevice

        msg = f"Unknown device type: {self.name}"
        raise ValueError(msg)
