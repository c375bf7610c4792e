# gateway_config.py - JSON gateway config -> explicitly wired Gateway
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from dispatcher import PushDispatcher
from errors import ConfigError
from gateway import Gateway
from pushtx_wrappers import WRAPPERS
from segment_store import STORAGES

logger = logging.getLogger(__name__)


@dataclass
class StorageConfig:
    type: str = "memory-cache"
    options: Dict[str, Any] = field(default_factory=lambda: {"cache_size": 10000, "ttl": 3600})


@dataclass
class WrapperConfig:
    type: str
    name: str
    network: Optional[str] = "main"
    options: Dict[str, Any] = field(default_factory=dict)


@dataclass
class GatewayConfig:
    bind_host: str = "0.0.0.0"
    bind_port: int = 8091
    workers: int = 4
    evict_on_mismatch: bool = False
    storage: StorageConfig = field(default_factory=StorageConfig)
    pushtx_wrappers: List[WrapperConfig] = field(default_factory=list)


def parse_config(obj: Dict[str, Any]) -> GatewayConfig:
    if not isinstance(obj, dict):
        raise ConfigError("gateway config must be a JSON object")
    st = obj.get("storage") or {}
    storage = StorageConfig(type=st.get("type", "memory-cache"),
                            options=st.get("options", StorageConfig().options))

    wrappers = []
    for i, w in enumerate(obj.get("pushtx_wrappers", [])):
        if "type" not in w:
            raise ConfigError(f"pushtx_wrappers[{i}]: missing 'type'")
        wrappers.append(WrapperConfig(type=w["type"], name=w.get("name", f"{w['type']}-{i}"),
                                      network=w.get("network", "main"), options=w.get("options", {})))

    return GatewayConfig(bind_host=obj.get("bind_host", "0.0.0.0"),
                         bind_port=int(obj.get("bind_port", 8091)),
                         workers=int(obj.get("workers", 4)),
                         evict_on_mismatch=bool(obj.get("evict_on_mismatch", False)),
                         storage=storage, pushtx_wrappers=wrappers)


def load_config(path: str) -> GatewayConfig:
    try:
        with open(path) as f:
            obj = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"unable to read gateway config {path}: {e}") from e
    return parse_config(obj)


def build_gateway(cfg: GatewayConfig) -> Gateway:
    make_storage = STORAGES.get(cfg.storage.type)
    if make_storage is None:
        raise ConfigError(f"unknown storage type: {cfg.storage.type}")
    storage = make_storage(cfg.storage.options)
    logger.info("Initialized storage %s", cfg.storage.type)

    dispatcher = PushDispatcher()
    for w in cfg.pushtx_wrappers:
        make_wrapper = WRAPPERS.get(w.type)
        if make_wrapper is None:
            raise ConfigError(f"unknown pushtx wrapper type: {w.type}")
        dispatcher.register(make_wrapper(w.name, w.network, w.options))
        logger.info("Initialized pushtx wrapper %s (%s)", w.name, w.type)

    if not dispatcher.backends:
        logger.warning("No pushtx wrapper configured; completed bundles will fail to push")

    return Gateway(storage, dispatcher, evict_on_mismatch=cfg.evict_on_mismatch)
