"""
Session configuration.

A ClientConfig is immutable: switching API key, API version or schema
version yields a new object, so every logical actor can hold its own
session without sharing a mutable slot.

Configuration is resolved by get_config() from, in this order:

* keyword arguments
* environment variables prepended with `ZOTAPI_`, like `ZOTAPI_API_KEY`
* a JSON or YAML config file with sections
"""
import json
import logging
import os
from dataclasses import dataclass
from dataclasses import fields
from dataclasses import replace
from fnmatch import fnmatch
from typing import Any
from typing import Dict
from typing import List
from typing import Optional

from zotapi.protocol.types import BasicAuth
from zotapi.protocol.types import Library

log = logging.getLogger(__name__)

DEFAULT_API_VERSION = 3


@dataclass(frozen=True)
class ClientConfig:
    """
    Immutable per-session configuration.

    Attributes:
        api_url_prefix: Base URL of the API, e.g. "http://localhost/"
        api_key: Ambient API key, sent as Bearer token (or key= for API < 3)
        api_version: Negotiated protocol version (Zotero-API-Version)
        schema_version: Pinned schema version (Zotero-Schema-Version), if any
        user_id: Id of the primary test user
        user_id2: Id of the secondary test user
        root_username: Username for privileged (Basic auth) calls
        root_password: Password for privileged calls
        timeout: Request timeout in seconds
        verify_ssl: Verify SSL certificates
    """

    api_url_prefix: str = "http://localhost/"
    api_key: Optional[str] = None
    api_version: Optional[int] = DEFAULT_API_VERSION
    schema_version: Optional[int] = None
    user_id: Optional[int] = None
    user_id2: Optional[int] = None
    root_username: Optional[str] = None
    root_password: Optional[str] = None
    timeout: float = 30.0
    verify_ssl: bool = True

    @property
    def root_auth(self) -> Optional[BasicAuth]:
        if self.root_username is None:
            return None
        return BasicAuth(self.root_username, self.root_password or "")

    @property
    def user_library(self) -> Library:
        if self.user_id is None:
            raise ValueError("user_id is not configured")
        return Library.user(self.user_id)

    def with_api_key(self, api_key: Optional[str]) -> "ClientConfig":
        return replace(self, api_key=api_key)

    def with_api_version(self, api_version: Optional[int]) -> "ClientConfig":
        return replace(self, api_version=api_version)

    def with_schema_version(self, schema_version: Optional[int]) -> "ClientConfig":
        return replace(self, schema_version=schema_version)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClientConfig":
        """
        Build a config from loosely typed data (env vars, config files).
        Unknown keys are logged and ignored.
        """
        known = {f.name: f for f in fields(cls)}
        kwargs: Dict[str, Any] = {}
        for key, value in data.items():
            key = _ALIASES.get(key, key)
            if key not in known:
                log.info(f"ignoring unknown configuration key {key}")
                continue
            kwargs[key] = _coerce(key, value)
        return cls(**kwargs)


## camelCase names as used by the JavaScript test configuration
_ALIASES = {
    "apiURLPrefix": "api_url_prefix",
    "url": "api_url_prefix",
    "apiKey": "api_key",
    "key": "api_key",
    "apiVersion": "api_version",
    "schemaVersion": "schema_version",
    "userID": "user_id",
    "userID2": "user_id2",
    "rootUsername": "root_username",
    "rootPassword": "root_password",
    "user": "root_username",
    "pass": "root_password",
}

_INT_KEYS = ("api_version", "schema_version", "user_id", "user_id2")


def _coerce(key: str, value: Any) -> Any:
    if value is None:
        return None
    if key in _INT_KEYS:
        return int(value)
    if key == "timeout":
        return float(value)
    if key == "verify_ssl" and isinstance(value, str):
        return value.lower() not in ("0", "false", "no", "off")
    return value


def _is_pattern(name: str) -> bool:
    return not set(name).isdisjoint("[*?")


def expand_config_section(config, section="default", blacklist=None) -> List[str]:
    """
    Names of the concrete sections a section name stands for, in file order.

    A plain name gives itself (nothing when the section is disabled).
    "*" gives every enabled section, and a glob pattern (work_*) every
    enabled section it matches.  A section with a "contains" list gives
    the expansion of each listed name, recursively; a section is never
    expanded twice.
    """
    blacklist = set() if blacklist is None else blacklist
    if _is_pattern(section):
        found: List[str] = []
        for name in config:
            if name == section or not fnmatch(name, section):
                continue
            if _is_pattern(name):
                names = [name]
            else:
                names = expand_config_section(config, name, blacklist)
            found.extend(n for n in names if n not in found)
        return found

    body = config.get(section, {})
    if body.get("disable", False):
        return []
    if "contains" not in body:
        return [section]
    blacklist.add(section)
    found = []
    for name in body["contains"]:
        if name in blacklist:
            continue
        names = expand_config_section(config, name, blacklist)
        found.extend(n for n in names if n not in found)
    return found


def config_section(config, section="default"):
    if section in config and "inherits" in config[section]:
        ret = config_section(config, config[section]["inherits"])
    else:
        ret = {}
    if section in config:
        ret.update(config[section])
    return ret


def read_config(fn):
    if not fn:
        cfgdir = f"{os.environ.get('HOME', '/')}/.config/"
        for config_file in (
            f"{cfgdir}/zotapi/config.json",
            f"{cfgdir}/zotapi/config.yaml",
            f"{cfgdir}/zotapi.conf",
            "/etc/zotapi/config.json",
        ):
            cfg = read_config(config_file)
            if cfg:
                return cfg
        return None

    try:
        try:
            with open(fn, "rb") as config_file:
                return json.load(config_file)
        except json.decoder.JSONDecodeError:
            import yaml

            try:
                with open(fn, "rb") as config_file:
                    return yaml.safe_load(config_file)
            except yaml.YAMLError:
                log.error(
                    f"config file {fn} exists but is neither valid json nor yaml.  Check the syntax."
                )
    except FileNotFoundError:
        log.info("no config file found")
    except ValueError:
        log.error("error in config file.  It will be ignored", exc_info=True)
    return {}


def get_config(
    check_config_file: bool = True,
    config_file: Optional[str] = None,
    config_section_name: Optional[str] = None,
    environment: bool = True,
    **config_data,
) -> ClientConfig:
    """
    Resolve a ClientConfig from the parameters given, the environment
    or a configuration file, in that order.  Falls back to defaults.
    """
    if config_data:
        return ClientConfig.from_dict(config_data)

    if environment:
        conf = {}
        for conf_key in (
            x
            for x in os.environ
            if x.startswith("ZOTAPI_") and not x.startswith("ZOTAPI_CONFIG")
        ):
            conf[conf_key[7:].lower()] = os.environ[conf_key]
        if conf:
            return ClientConfig.from_dict(conf)
        if not config_file:
            config_file = os.environ.get("ZOTAPI_CONFIG_FILE")
        if not config_section_name:
            config_section_name = os.environ.get("ZOTAPI_CONFIG_SECTION")

    if check_config_file:
        if not config_section_name:
            config_section_name = "default"

        cfg = read_config(config_file)
        if cfg:
            sections = expand_config_section(cfg, config_section_name)
            if not sections:
                log.warning(f"config section {config_section_name} selects no enabled section")
                return ClientConfig()
            if len(sections) > 1:
                log.info(
                    f"config section {config_section_name} expands to {sections}, "
                    f"using {sections[0]}"
                )
            section = config_section(cfg, sections[0])
            section.pop("inherits", None)
            section.pop("contains", None)
            section.pop("disable", None)
            if section:
                return ClientConfig.from_dict(section)

    return ClientConfig()
