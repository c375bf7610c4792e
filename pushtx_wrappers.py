# pushtx_wrappers.py - pushtx backends (bitcoind RPC, REST backend, in-memory)
# Every push_tx() resolves transport/service errors to False; nothing raises past it.
import itertools
import logging
import threading
from typing import List, Optional

import requests

from relay_common import normalize_network

logger = logging.getLogger(__name__)

HTTP_TIMEOUT_S = 30
TOKEN_REFRESH_S = 600


class BitcoindWrapper:
    """Pushes through the JSON-RPC API (sendrawtransaction) of a bitcoind node."""

    def __init__(self, name: str = "bitcoind", network: Optional[str] = "main",
                 rpc: Optional[dict] = None, session: Optional[requests.Session] = None):
        rpc = rpc or {}
        self.name = name
        self.network = normalize_network(network) if network is not None else None
        self.url = f"{rpc.get('protocol', 'http')}://{rpc.get('host', '127.0.0.1')}:{rpc.get('port', 8332)}/"
        self.auth = (rpc.get("user", ""), rpc.get("pass", ""))
        self.timeout = rpc.get("timeout", HTTP_TIMEOUT_S)
        self.http = session or requests.Session()
        # shared by concurrent pushes; next() on a count never repeats an id
        self._ids = itertools.count(1)

    def push_tx(self, raw_tx: str) -> bool:
        logger.info("Trying to push a transaction over %s", self.name)
        body = {"jsonrpc": "1.0", "id": next(self._ids), "method": "sendrawtransaction", "params": [raw_tx]}
        try:
            r = self.http.post(self.url, json=body, auth=self.auth, timeout=self.timeout)
            result = r.json()
        except (requests.RequestException, ValueError) as e:
            logger.error("A problem was met while trying to push a transaction over %s: %s", self.name, e)
            return False

        err = result.get("error") if isinstance(result, dict) else None
        if err:
            logger.error("A problem (error code %s) was met while trying to push a transaction over %s: %s",
                         err.get("code"), self.name, err.get("message"))
            return False
        if not isinstance(result, dict) or r.status_code != 200:
            logger.error("Unexpected reply (HTTP %s) from %s", r.status_code, self.name)
            return False

        logger.info("Successfully pushed %s over %s", result.get("result"), self.name)
        return True


class BackendWrapper:
    """
    Pushes through the /pushtx/ endpoint of a REST backend.
    With an api_key, authenticates (JWT access + refresh tokens) and
    refreshes the access token every TOKEN_REFRESH_S seconds.
    """

    def __init__(self, name: str = "backend", network: Optional[str] = "main",
                 url: str = "", api_key: Optional[str] = None,
                 session: Optional[requests.Session] = None, auto_auth: bool = True):
        self.name = name
        self.network = normalize_network(network) if network is not None else None
        self.url = url.rstrip("/")
        self.api_key = api_key
        self.http = session or requests.Session()
        self._access_token: Optional[str] = None
        self._refresh_token: Optional[str] = None
        self._refresh_timer: Optional[threading.Timer] = None
        self._mu = threading.Lock()
        if self.api_key is not None and auto_auth:
            self.get_auth_tokens()

    def push_tx(self, raw_tx: str) -> bool:
        logger.info("Trying to push transaction over %s", self.name)
        form = {"tx": raw_tx}
        with self._mu:
            if self._access_token is not None:
                form["at"] = self._access_token
        try:
            r = self.http.post(f"{self.url}/pushtx/", data=form, timeout=HTTP_TIMEOUT_S)
            result = r.json()
        except (requests.RequestException, ValueError) as e:
            logger.error("A problem was met while trying to push a transaction over %s: %s", self.name, e)
            return False

        if isinstance(result, dict) and result.get("status") == "ok":
            logger.info("Successfully pushed %s over %s", result.get("data"), self.name)
            return True

        err = (result.get("error") or {}) if isinstance(result, dict) else {}
        if not isinstance(err, dict):
            err = {"message": err}
        logger.error("A problem (error code %s) was met while trying to push a transaction over %s: %s",
                     err.get("code"), self.name, err.get("message"))
        return False

    def get_auth_tokens(self) -> bool:
        logger.info("Trying to authenticate to %s", self.name)
        self.cancel_refresh()
        try:
            r = self.http.post(f"{self.url}/auth/login", params={"apikey": self.api_key},
                               timeout=HTTP_TIMEOUT_S)
            auth = r.json()["authorizations"]
            with self._mu:
                self._access_token = auth["access_token"]
                self._refresh_token = auth.get("refresh_token")
        except (requests.RequestException, ValueError, KeyError, TypeError) as e:
            logger.error("A problem was met while trying to authenticate to %s: %s", self.name, e)
            return False
        self.schedule_refresh()
        logger.info("Successfully authenticated to %s", self.name)
        return True

    def refresh_auth_token(self) -> bool:
        logger.info("Trying to refresh the access token of %s", self.name)
        with self._mu:
            rt = self._refresh_token
        if rt is None:
            return self.get_auth_tokens()
        try:
            r = self.http.post(f"{self.url}/auth/refresh", params={"rt": rt}, timeout=HTTP_TIMEOUT_S)
            token = r.json()["authorizations"]["access_token"]
        except (requests.RequestException, ValueError, KeyError, TypeError) as e:
            logger.error("A problem was met while trying to refresh the access token of %s: %s", self.name, e)
            # fall back to a full login
            return self.get_auth_tokens()
        with self._mu:
            self._access_token = token
        self.cancel_refresh()
        self.schedule_refresh()
        logger.info("Successfully refreshed the access token of %s", self.name)
        return True

    def schedule_refresh(self) -> None:
        t = threading.Timer(TOKEN_REFRESH_S, self.refresh_auth_token)
        t.daemon = True
        self._refresh_timer = t
        t.start()

    def cancel_refresh(self) -> None:
        if self._refresh_timer is not None:
            self._refresh_timer.cancel()
            self._refresh_timer = None

    close = cancel_refresh


class MemoryWrapper:
    """Records pushed transactions in memory; accepts everything unless told otherwise."""

    def __init__(self, name: str = "memory", network: Optional[str] = None, accept: bool = True):
        self.name = name
        self.network = normalize_network(network) if network is not None else None
        self.accept = accept
        self.pushed: List[str] = []

    def push_tx(self, raw_tx: str) -> bool:
        self.pushed.append(raw_tx)
        logger.info("%s %s a transaction", self.name, "accepted" if self.accept else "refused")
        return self.accept


def _bitcoind(name, network, options):
    return BitcoindWrapper(name=name, network=network, rpc=options.get("rpc"))


def _backend(name, network, options):
    return BackendWrapper(name=name, network=network, url=options.get("url", ""),
                          api_key=options.get("api_key"))


def _memory(name, network, options):
    return MemoryWrapper(name=name, network=network, accept=options.get("accept", True))


WRAPPERS = {
    "bitcoind": _bitcoind,
    "samourai-backend": _backend,
    "backend": _backend,
    "memory": _memory,
}
