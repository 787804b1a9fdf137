import logging
from enum import Enum

from ...base import BaseModel
from ...metric import DISCOVERED_COUNT_METRIC, DISCOVERY_LATENCY_METRIC, Aggregation, ResultType, ResultUnit
from ..devices.api import Action, Capability, DeviceChannel
from ..errors import CaseFailure, FailureCause
from .api import Check, CheckContext

log = logging.getLogger(__name__)


class ServiceType(str, Enum):
    DNS_PTR = "dns_ptr"
    DNS_TXT = "dns_txt"
    UPNP = "upnp"


class ServiceRequest(BaseModel):
    """A service discovery request, type None asks for every service type"""

    type: ServiceType | None = None
    query: str = ""


class Service(BaseModel):
    """A service advertised by the peer, ``keys`` are the queries it answers to"""

    type: ServiceType
    name: str
    keys: list[str] = []

    def matches(self, request: ServiceRequest) -> bool:
        if request.type is None:
            return True
        if request.type != self.type:
            return False
        return not request.query or request.query in self.keys


# services registered by the reference responder device
IPP_SERVICE = "MyPrinter._ipp._tcp.local."
AFP_SERVICE = "Example._afpovertcp._tcp.local."
UPNP_UUID = "uuid:6859dede-8574-59ab-9332-123456789011"
UPNP_ROOT_DEVICE = f"{UPNP_UUID}::upnp:rootdevice"
UPNP_MEDIA_SERVER = f"{UPNP_UUID}::urn:schemas-upnp-org:device:MediaServer:1"
UPNP_AV_TRANSPORT = f"{UPNP_UUID}::urn:schemas-upnp-org:service:AVTransport:1"
UPNP_CONNECTION_MANAGER = f"{UPNP_UUID}::urn:schemas-upnp-org:service:ConnectionManager:1"

REFERENCE_SERVICES = [
    Service(type=ServiceType.DNS_PTR, name=IPP_SERVICE, keys=["_ipp._tcp"]),
    Service(type=ServiceType.DNS_PTR, name=AFP_SERVICE, keys=["_afpovertcp._tcp"]),
    Service(type=ServiceType.DNS_TXT, name=IPP_SERVICE, keys=["MyPrinter._ipp._tcp"]),
    Service(type=ServiceType.UPNP, name=UPNP_UUID, keys=["ssdp:all", "upnp:rootdevice"]),
    Service(type=ServiceType.UPNP, name=UPNP_ROOT_DEVICE, keys=["ssdp:all", "upnp:rootdevice"]),
    Service(
        type=ServiceType.UPNP,
        name=UPNP_MEDIA_SERVER,
        keys=["ssdp:all", "urn:schemas-upnp-org:device:MediaServer:1"],
    ),
    Service(
        type=ServiceType.UPNP,
        name=UPNP_AV_TRANSPORT,
        keys=["ssdp:all", "urn:schemas-upnp-org:service:AVTransport:1"],
    ),
    Service(
        type=ServiceType.UPNP,
        name=UPNP_CONNECTION_MANAGER,
        keys=["ssdp:all", "urn:schemas-upnp-org:service:ConnectionManager:1"],
    ),
]

NO_SERVICES: frozenset[str] = frozenset()
IPP_DNS_PTR = frozenset({IPP_SERVICE})
ALL_DNS_PTR = frozenset({IPP_SERVICE, AFP_SERVICE})
IPP_DNS_TXT = frozenset({IPP_SERVICE})
ALL_DNS_TXT = IPP_DNS_TXT
UPNP_ROOT_DEVICES = frozenset({UPNP_UUID, UPNP_ROOT_DEVICE})
ALL_UPNP_SERVICES = frozenset(
    {UPNP_UUID, UPNP_ROOT_DEVICE, UPNP_MEDIA_SERVER, UPNP_AV_TRANSPORT, UPNP_CONNECTION_MANAGER},
)


class P2pServiceDiscoveryCheck(Check):
    """Send service requests to the peer and compare what comes back, per
    service type, with the expected set of service names.

    The device answers ``p2p.discover_services`` with one response per service
    found: ``{"type": "dns_ptr" | "dns_txt" | "upnp", "name": str}``.
    """

    required_capabilities = frozenset({Capability.WIFI_P2P, Capability.WIFI_P2P_SERVICE_DISCOVERY})

    def __init__(
        self,
        name: str,
        requests: list[ServiceRequest],
        expected_ptr: frozenset[str] = NO_SERVICES,
        expected_txt: frozenset[str] = NO_SERVICES,
        expected_upnp: frozenset[str] = NO_SERVICES,
        target: str = "",
        window: float = 3.0,
    ):
        self.name = name
        self.requests = requests
        self.expected = {
            ServiceType.DNS_PTR: expected_ptr,
            ServiceType.DNS_TXT: expected_txt,
            ServiceType.UPNP: expected_upnp,
        }
        self.target = target
        self.window = window
        self._requested = False

    def run(self, ctx: CheckContext) -> str:
        pending = ctx.request(
            Action.P2P_DISCOVER_SERVICES,
            {
                "target": self.target,
                "requests": [r.model_dump(mode="json") for r in self.requests],
            },
        )
        self._requested = True
        got = ctx.collect(pending, self.window)

        found: dict[ServiceType, set[str]] = {t: set() for t in ServiceType}
        latencies = []
        for latency, response in got:
            if response.error:
                raise CaseFailure(FailureCause.UNEXPECTED_RESPONSE, f"discovery failed: {response.error}")
            try:
                service_type = ServiceType(response.payload.get("type"))
                service_name = response.payload["name"]
            except (KeyError, ValueError) as e:
                msg = f"malformed service response {response.payload}: {e}"
                raise CaseFailure(FailureCause.PROTOCOL_MISMATCH, msg) from e
            found[service_type].add(service_name)
            latencies.append(latency)

        for service_type, expected in self.expected.items():
            if found[service_type] != expected:
                missing = sorted(expected - found[service_type])
                unexpected = sorted(found[service_type] - expected)
                msg = f"{service_type.value} mismatch, missing={missing}, unexpected={unexpected}"
                raise CaseFailure(FailureCause.UNEXPECTED_RESPONSE, msg)

        total = sum(len(v) for v in found.values())
        ctx.report_log.add_value(
            DISCOVERED_COUNT_METRIC,
            total,
            ResultUnit.COUNT,
            ResultType.NEUTRAL,
            source=self.__class__.__name__,
        )
        if latencies:
            ctx.report_log.add_values(
                DISCOVERY_LATENCY_METRIC,
                latencies,
                ResultUnit.MS,
                ResultType.LOWER_BETTER,
                Aggregation.P95,
                source=self.__class__.__name__,
            )
        return f"discovered {total} services as expected"

    def release(self, device: DeviceChannel) -> None:
        if self._requested:
            device.cancel(Action.P2P_DISCOVER_SERVICES)
            device.request(Action.P2P_CLEAR_SERVICE_REQUESTS, {"target": self.target}, lambda _: None)
            self._requested = False


def all_services_check(target: str = "") -> P2pServiceDiscoveryCheck:
    return P2pServiceDiscoveryCheck(
        "Request all services test",
        [ServiceRequest()],
        expected_ptr=ALL_DNS_PTR,
        expected_txt=ALL_DNS_TXT,
        expected_upnp=ALL_UPNP_SERVICES,
        target=target,
    )


def dns_ptr_check(target: str = "") -> P2pServiceDiscoveryCheck:
    return P2pServiceDiscoveryCheck(
        "Request DNS PTR service test",
        [ServiceRequest(type=ServiceType.DNS_PTR, query="_ipp._tcp")],
        expected_ptr=IPP_DNS_PTR,
        target=target,
    )


def dns_txt_check(target: str = "") -> P2pServiceDiscoveryCheck:
    return P2pServiceDiscoveryCheck(
        "Request DNS TXT record test",
        [ServiceRequest(type=ServiceType.DNS_TXT, query="MyPrinter._ipp._tcp")],
        expected_txt=IPP_DNS_TXT,
        target=target,
    )


def upnp_root_device_check(target: str = "") -> P2pServiceDiscoveryCheck:
    return P2pServiceDiscoveryCheck(
        "Request UPnP root device test",
        [ServiceRequest(type=ServiceType.UPNP, query="upnp:rootdevice")],
        expected_upnp=UPNP_ROOT_DEVICES,
        target=target,
    )
