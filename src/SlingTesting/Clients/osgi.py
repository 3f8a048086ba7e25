"""Web-console client with pollers for OSGi convergence.

Bundle, component and configuration changes made through the Felix web
console are applied asynchronously by the framework.  Each ``wait_*``
method wraps a probe built from plain console requests in
:class:`~SlingTesting.Clients.polling.Polling` and raises
:class:`~SlingTesting.Clients.errors.PollTimeoutError` with a message naming
the bundle, component, service or PID when the framework does not converge.
"""

from __future__ import annotations

import logging
import os
import re
import zipfile
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

import httpx

from .client import SlingClient
from .errors import ClientError, OperationCancelled, ValidationError
from .executor import ExpectedStatus
from .polling import PollOutcome, ProbeResult

logger = logging.getLogger(__name__)

__all__ = [
    "OsgiConsoleClient",
    "extract_osgi_configuration",
    "get_bundle_symbolic_name",
    "read_bundle_manifest",
    "split_pseudo_json_array",
]

CONSOLE_ROOT_URL = "/system/console"
URL_CONFIGURATION = CONSOLE_ROOT_URL + "/configMgr"
URL_BUNDLES = CONSOLE_ROOT_URL + "/bundles"
URL_COMPONENTS = CONSOLE_ROOT_URL + "/components"
URL_SERVICES = CONSOLE_ROOT_URL + "/services"

JSON_KEY_ID = "id"
JSON_KEY_VERSION = "version"
JSON_KEY_DATA = "data"
JSON_KEY_STATE = "state"

BUNDLE_STATE_ACTIVE = "Active"
BUNDLE_MIME_TYPE = "application/java-archive"
MANIFEST_PATH = "META-INF/MANIFEST.MF"
MANIFEST_SYMBOLIC_NAME = "Bundle-SymbolicName"
COMPONENT_REGISTERED_STATES = frozenset({"satisfied", "active"})

#: Delay between configuration lookups of :meth:`OsgiConsoleClient.wait_get_configuration`.
CONFIGURATION_POLL_DELAY_MS = 500

ConfigValue = Union[str, List[str]]


def _property_value(node: Mapping[str, Any]) -> Optional[ConfigValue]:
    if "value" in node:
        return str(node["value"])
    if "values" in node:
        return [str(item) for item in node["values"]]
    return None


def extract_osgi_configuration(root: Mapping[str, Any]) -> Optional[Dict[str, ConfigValue]]:
    """Return the set properties of a configMgr payload, or ``None`` if it has no configuration.

    A payload without a ``bundle_location`` key describes a PID for which no
    configuration exists yet; properties with ``is_set`` false only carry
    metatype defaults and are skipped.
    """
    if "bundle_location" not in root:
        return None
    result: Dict[str, ConfigValue] = {}
    for name, node in (root.get("properties") or {}).items():
        if not node.get("is_set"):
            continue
        value = _property_value(node)
        if value is not None:
            result[name] = value
    return result


def read_bundle_manifest(bundle_file: Union[str, os.PathLike]) -> Dict[str, str]:
    """Main attributes of the ``META-INF/MANIFEST.MF`` inside a bundle jar.

    Raises:
        ValidationError: If the file is not a jar or carries no manifest.
    """
    try:
        with zipfile.ZipFile(bundle_file) as jar:
            raw = jar.read(MANIFEST_PATH).decode("utf-8")
    except (zipfile.BadZipFile, KeyError) as exc:
        raise ValidationError(f"Manifest is missing in {bundle_file}") from exc

    attributes: Dict[str, str] = {}
    last: Optional[str] = None
    for line in raw.splitlines():
        if not line:
            # End of the main section.
            break
        if line.startswith(" ") and last is not None:
            attributes[last] += line[1:]
            continue
        name, sep, value = line.partition(":")
        if not sep:
            continue
        last = name.strip()
        attributes[last] = value[1:] if value.startswith(" ") else value
    return attributes


def get_bundle_symbolic_name(bundle_file: Union[str, os.PathLike]) -> str:
    """``Bundle-SymbolicName`` of a bundle jar, without directives such as ``singleton:=true``."""

    name = read_bundle_manifest(bundle_file).get(MANIFEST_SYMBOLIC_NAME)
    if not name:
        raise ValidationError(f"{MANIFEST_SYMBOLIC_NAME} is missing in {bundle_file}")
    return name.split(";", 1)[0].strip()


def split_pseudo_json_array(value: str) -> List[str]:
    """Split Felix's ``"[a, b, c]"`` rendering of array values into its items."""

    if value.startswith("[") and len(value) >= 2:
        return re.split(r", |,", value[1:-1])
    return [value]


class OsgiConsoleClient(SlingClient):
    """Client for the Felix web console (bundles, components, services, configurations)."""

    # ------------------------------------------------------------------
    # Bundles
    # ------------------------------------------------------------------

    @staticmethod
    def bundle_path(symbolic_name: str) -> str:
        return f"{URL_BUNDLES}/{symbolic_name}"

    def get_bundle_data(self, symbolic_name: str) -> Dict[str, Any]:
        """Return ``data[0]`` of ``/system/console/bundles/<name>.json``.

        Raises:
            ValidationError: If ``data`` is missing or empty, or lacks ``state``.
        """
        path = self.bundle_path(symbolic_name) + ".json"
        response = self.do_get(path, expected_status=200)
        root = self.parse_json(response)
        data = root.get(JSON_KEY_DATA) if isinstance(root, dict) else None
        if data is None:
            raise ValidationError(
                f"{path} does not provide '{JSON_KEY_DATA}' element, JSON content={response.text}",
                response=response,
            )
        if not data:
            raise ValidationError(f"{path}.{JSON_KEY_DATA} is empty, JSON content={response.text}", response=response)
        bundle = data[0]
        if JSON_KEY_STATE not in bundle:
            raise ValidationError(f"{path}.data[0].state missing, JSON content={response.text}", response=response)
        return bundle

    def _bundle_field(self, symbolic_name: str, key: str) -> Any:
        bundle = self.get_bundle_data(symbolic_name)
        if bundle.get(key) is None:
            raise ValidationError(f"Cannot get {key} from bundle json")
        return bundle[key]

    def get_bundle_state(self, symbolic_name: str) -> str:
        return str(self._bundle_field(symbolic_name, JSON_KEY_STATE))

    def get_bundle_id(self, symbolic_name: str) -> int:
        return int(self._bundle_field(symbolic_name, JSON_KEY_ID))

    def get_bundle_version(self, symbolic_name: str) -> str:
        return str(self._bundle_field(symbolic_name, JSON_KEY_VERSION))

    def start_bundle(self, symbolic_name: str) -> None:
        path = self.bundle_path(symbolic_name)
        logger.info("starting bundle", extra={"bundle": symbolic_name, "path": path})
        self.do_post(path, {"action": "start"}, expected_status=200)

    def stop_bundle(self, symbolic_name: str) -> None:
        path = self.bundle_path(symbolic_name)
        logger.info("stopping bundle", extra={"bundle": symbolic_name, "path": path})
        self.do_post(path, {"action": "stop"}, expected_status=200)

    def uninstall_bundle(self, symbolic_name: str) -> None:
        logger.info("uninstalling bundle", extra={"bundle": symbolic_name})
        self.do_post(self.bundle_path(symbolic_name), {"action": "uninstall"}, expected_status=200)

    def refresh_packages(self) -> None:
        logger.info("refreshing packages")
        self.do_post(URL_BUNDLES, {"action": "refreshPackages"}, expected_status=200)

    def install_bundle(
        self,
        bundle_file: Union[str, os.PathLike],
        start: bool = False,
        start_level: int = 0,
        *,
        expected_status: ExpectedStatus = 302,
    ) -> httpx.Response:
        """Upload a bundle jar through the console; ``start_level <= 0`` keeps the default level."""

        path = Path(bundle_file)
        data: Dict[str, str] = {"action": "install"}
        if start:
            data["bundlestart"] = "true"
        if start_level > 0:
            data["bundlestartlevel"] = str(start_level)
            logger.info("installing bundle", extra={"bundle_file": path.name, "start_level": start_level})
        else:
            logger.info("installing bundle at default start level", extra={"bundle_file": path.name})
        files = {"bundlefile": (path.name, path.read_bytes(), BUNDLE_MIME_TYPE)}
        return self.do_post(URL_BUNDLES, data, expected_status=expected_status, files=files)

    def wait_install_bundle(
        self,
        bundle_file: Union[str, os.PathLike],
        start: bool,
        start_level: int,
        timeout_ms: int,
        delay_ms: int,
    ) -> PollOutcome:
        """Install a bundle jar, then wait until the console knows its symbolic name."""

        symbolic_name = get_bundle_symbolic_name(bundle_file)
        self.install_bundle(bundle_file, start, start_level)
        return self.wait_bundle_installed(symbolic_name, timeout_ms, delay_ms)

    def wait_bundle_installed(self, symbolic_name: str, timeout_ms: int, delay_ms: int) -> PollOutcome:
        """Wait until ``<bundle path>.json`` exists."""

        path = self.bundle_path(symbolic_name)
        poller = self.poller(
            lambda: self.exists(path),
            f"Bundle {symbolic_name} did not install in {{timeout}} ms",
        )
        return poller.poll(timeout_ms, delay_ms)

    def wait_bundle_started(self, symbolic_name: str, timeout_ms: int, delay_ms: int) -> PollOutcome:
        """Wait until the bundle reports the ``Active`` state."""

        def probe() -> ProbeResult:
            try:
                state = self.get_bundle_state(symbolic_name)
            except OperationCancelled:
                raise
            except ClientError as exc:
                logger.debug("could not get bundle state", extra={"bundle": symbolic_name, "error": str(exc)})
                return ProbeResult.NOT_YET
            return ProbeResult.CONVERGED if state == BUNDLE_STATE_ACTIVE else ProbeResult.NOT_YET

        poller = self.poller(
            probe,
            f"Bundle {symbolic_name} did not start in {{timeout}} ms",
        )
        return poller.poll(timeout_ms, delay_ms)

    def wait_start_bundle(self, symbolic_name: str, timeout_ms: int, delay_ms: int) -> PollOutcome:
        """Start the bundle, then wait for it to become active."""

        self.start_bundle(symbolic_name)
        return self.wait_bundle_started(symbolic_name, timeout_ms, delay_ms)

    # ------------------------------------------------------------------
    # Components
    # ------------------------------------------------------------------

    def get_component_state(self, name: str) -> Optional[str]:
        """State of component ``name``, or ``None`` if the console does not know it."""

        response = self.do_get(f"{URL_COMPONENTS}/{name}.json")
        if response.status_code != 200:
            return None
        root = self.parse_json(response)
        data = root.get(JSON_KEY_DATA) if isinstance(root, dict) else None
        if not data:
            return None
        state = data[0].get(JSON_KEY_STATE)
        return str(state) if state is not None else None

    def wait_component_registered(self, name: str, timeout_ms: int, delay_ms: int) -> PollOutcome:
        """Wait until the component is ``satisfied`` or ``active``."""

        def probe() -> bool:
            state = self.get_component_state(name)
            if state is None:
                logger.debug("could not get component info", extra={"component": name})
                return False
            return state.lower() in COMPONENT_REGISTERED_STATES

        poller = self.poller(
            probe,
            f"Component {name} was not registered in {{timeout}} ms",
        )
        return poller.poll(timeout_ms, delay_ms)

    # ------------------------------------------------------------------
    # Services
    # ------------------------------------------------------------------

    def get_service_infos(self, service_type: str) -> Optional[List[Dict[str, Any]]]:
        """Services registered under ``service_type``, or ``None`` if the console does not answer 200.

        Raises:
            ValidationError: If ``services.json`` lacks ``status`` or ``serviceCount``.
        """
        response = self.do_get(URL_SERVICES + ".json")
        if response.status_code != 200:
            return None
        root = self.parse_json(response)
        if not isinstance(root, dict) or "status" not in root or "serviceCount" not in root:
            raise ValidationError(
                f"{URL_SERVICES}.json does not provide 'status' and 'serviceCount'", response=response
            )
        infos = []
        for service in root.get(JSON_KEY_DATA) or []:
            types = service.get("types")
            if isinstance(types, str):
                types = split_pseudo_json_array(types)
            if isinstance(types, list) and service_type in types:
                infos.append(service)
        return infos

    def wait_service_registered(
        self,
        service_type: str,
        bundle_symbolic_name: Optional[str],
        timeout_ms: int,
        delay_ms: int,
    ) -> PollOutcome:
        """Wait until a service of ``service_type`` is registered.

        With ``bundle_symbolic_name`` the service must be provided by that
        bundle; without it any registration of the type will do.
        """

        def probe() -> bool:
            infos = self.get_service_infos(service_type)
            if infos is None:
                logger.debug("could not find any service info", extra={"service_type": service_type})
                return False
            if bundle_symbolic_name is None:
                return bool(infos)
            if any(info.get("bundleSymbolicName") == bundle_symbolic_name for info in infos):
                return True
            logger.debug(
                "could not find service provided by bundle",
                extra={"service_type": service_type, "bundle": bundle_symbolic_name},
            )
            return False

        poller = self.poller(
            probe,
            f"Service with type {service_type} was not registered in {{timeout}} ms",
        )
        return poller.poll(timeout_ms, delay_ms)

    # ------------------------------------------------------------------
    # Configurations
    # ------------------------------------------------------------------

    def get_osgi_configuration(
        self, pid: str, *, expected_status: ExpectedStatus = 200
    ) -> Optional[Dict[str, ConfigValue]]:
        """Set properties of configuration ``pid``, or ``None`` if it does not exist."""

        response = self.do_post(f"{URL_CONFIGURATION}/{pid}", expected_status=expected_status)
        root = self.parse_json(response)
        if not isinstance(root, dict):
            raise ValidationError(f"Unexpected configuration payload for {pid}", response=response)
        return extract_osgi_configuration(root)

    def edit_configuration(
        self,
        pid: str,
        properties: Mapping[str, Union[str, Sequence[str]]],
        *,
        factory_pid: Optional[str] = None,
        expected_status: ExpectedStatus = 302,
    ) -> Optional[str]:
        """Apply ``properties`` to ``pid``; returns the PID from the ``Location`` header."""

        data: Dict[str, Any] = {"apply": "true", "action": "ajaxConfigManager"}
        if factory_pid is not None:
            data["factoryPid"] = factory_pid
        for name, value in properties.items():
            data[name] = value if isinstance(value, str) else list(value)
        data["propertylist"] = ",".join(properties)
        response = self.do_post(f"{URL_CONFIGURATION}/{pid}", data, expected_status=expected_status)
        location = response.headers.get("Location")
        if not location or URL_CONFIGURATION not in location:
            return None
        return location[location.index(URL_CONFIGURATION) + len(URL_CONFIGURATION) + 1 :]

    def delete_configuration(self, pid: str, *, expected_status: ExpectedStatus = 200) -> None:
        self.do_post(f"{URL_CONFIGURATION}/{pid}", {"apply": "1", "delete": "1"}, expected_status=expected_status)

    def wait_get_configuration(
        self, timeout_ms: int, pid: str, *, expected_status: ExpectedStatus = 200
    ) -> Dict[str, ConfigValue]:
        """Poll every 500 ms until configuration ``pid`` exists and return it."""

        found: Dict[str, Dict[str, ConfigValue]] = {}

        def probe() -> bool:
            config = self.get_osgi_configuration(pid, expected_status=expected_status)
            if config is None:
                return False
            found["config"] = config
            return True

        poller = self.poller(
            probe,
            f"Configuration {pid} was not available in {{timeout}} ms. Last exception was: {{last_error}}",
        )
        poller.poll(timeout_ms, CONFIGURATION_POLL_DELAY_MS)
        return found["config"]

    def wait_configuration_property(
        self, pid: str, name: str, value: ConfigValue, timeout_ms: int, delay_ms: int
    ) -> PollOutcome:
        """Wait until property ``name`` of ``pid`` equals ``value``."""

        def probe() -> bool:
            config = self.get_osgi_configuration(pid)
            return config is not None and config.get(name) == value

        poller = self.poller(
            probe,
            f"Property {name} of configuration {pid} did not become {value!r} in {{timeout}} ms",
        )
        return poller.poll(timeout_ms, delay_ms)

    def wait_edit_configuration(
        self,
        timeout_ms: int,
        pid: str,
        properties: Mapping[str, Union[str, Sequence[str]]],
        *,
        factory_pid: Optional[str] = None,
    ) -> Optional[str]:
        """Edit a configuration and wait until the resulting PID is readable."""

        new_pid = self.edit_configuration(pid, properties, factory_pid=factory_pid) or pid
        self.wait_get_configuration(timeout_ms, new_pid)
        return new_pid

    def get_config_pid_from_services(
        self,
        service_type: str,
        property_name: str,
        property_value: str,
        timeout_ms: int,
        delay_ms: int,
    ) -> Optional[str]:
        """Find the PID of a (factory) configuration by one of its property values."""

        holder: Dict[str, Any] = {}

        def probe() -> bool:
            holder["configs"] = self.get_json(
                f"{URL_CONFIGURATION}/*.json",
                expected_status=None,
                params={"pidFilter": f"(service.pid={service_type}.*)"},
            )
            return True

        self.poller(probe).poll(timeout_ms, delay_ms)
        configurations = holder["configs"]
        if configurations is None:
            return None
        if not isinstance(configurations, list):
            raise ValidationError(
                f"{URL_CONFIGURATION}/*.json did not return a list of configurations: {configurations!r}"
            )
        for configuration in configurations:
            if not isinstance(configuration, dict):
                continue
            properties = configuration.get("properties") or {}
            if str((properties.get(property_name) or {}).get("value")) == property_value:
                return configuration.get("pid")
        return None
