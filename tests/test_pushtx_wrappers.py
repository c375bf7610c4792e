import threading

import requests

import pushtx_wrappers
from pushtx_wrappers import BackendWrapper, BitcoindWrapper, MemoryWrapper, WRAPPERS


class FakeResponse:
    def __init__(self, body, status_code=200):
        self._body = body
        self.status_code = status_code

    def json(self):
        if isinstance(self._body, Exception):
            raise self._body
        return self._body


class FakeSession:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def post(self, url, **kw):
        self.calls.append((url, kw))
        r = self.responses.pop(0)
        if isinstance(r, requests.RequestException):
            raise r
        return r


RPC = {"host": "node", "port": 18332, "user": "u", "pass": "p"}


def test_bitcoind_push_ok():
    http = FakeSession(FakeResponse({"result": "ab" * 32, "error": None, "id": 1}))
    w = BitcoindWrapper("node", "t", RPC, session=http)
    assert w.network == "test"
    assert w.push_tx("0100") is True
    url, kw = http.calls[0]
    assert url == "http://node:18332/"
    assert kw["json"]["method"] == "sendrawtransaction"
    assert kw["json"]["params"] == ["0100"]
    assert kw["auth"] == ("u", "p")


def test_bitcoind_rpc_error():
    body = {"result": None, "error": {"code": -26, "message": "txn-mempool-conflict"}, "id": 1}
    w = BitcoindWrapper("node", "main", RPC, session=FakeSession(FakeResponse(body, 500)))
    assert w.push_tx("0100") is False


def test_bitcoind_transport_errors_resolve_to_false():
    w = BitcoindWrapper("node", "main", RPC, session=FakeSession(requests.ConnectionError("refused")))
    assert w.push_tx("0100") is False
    w = BitcoindWrapper("node", "main", RPC, session=FakeSession(FakeResponse(ValueError("no json"), 502)))
    assert w.push_tx("0100") is False


def test_backend_push_without_auth():
    http = FakeSession(FakeResponse({"status": "ok", "data": "ab" * 32}))
    w = BackendWrapper("api", "main", "https://api.example/v2/", session=http)
    assert w.push_tx("0100") is True
    url, kw = http.calls[0]
    assert url == "https://api.example/v2/pushtx/"
    assert kw["data"] == {"tx": "0100"}


def test_backend_push_refused():
    body = {"status": "error", "error": {"message": "bad tx", "code": 400}}
    w = BackendWrapper("api", "main", "https://api.example", session=FakeSession(FakeResponse(body)))
    assert w.push_tx("0100") is False
    w = BackendWrapper("api", "main", "https://api.example",
                       session=FakeSession(requests.Timeout("slow")))
    assert w.push_tx("0100") is False


def test_backend_auth_and_refresh(monkeypatch):
    scheduled = []
    monkeypatch.setattr(BackendWrapper, "schedule_refresh", lambda self: scheduled.append(self))
    http = FakeSession(
        FakeResponse({"authorizations": {"access_token": "at1", "refresh_token": "rt1"}}),
        FakeResponse({"status": "ok", "data": "ab"}),
        FakeResponse({"authorizations": {"access_token": "at2"}}),
        FakeResponse({"status": "ok", "data": "ab"}),
    )
    w = BackendWrapper("api", "main", "https://api.example", api_key="k", session=http)
    assert http.calls[0][0] == "https://api.example/auth/login"
    assert http.calls[0][1]["params"] == {"apikey": "k"}

    assert w.push_tx("0100")
    assert http.calls[1][1]["data"] == {"tx": "0100", "at": "at1"}

    assert w.refresh_auth_token()
    assert http.calls[2][1]["params"] == {"rt": "rt1"}
    assert w.push_tx("0100")
    assert http.calls[3][1]["data"]["at"] == "at2"
    assert len(scheduled) == 2


def test_backend_failed_refresh_falls_back_to_login(monkeypatch):
    monkeypatch.setattr(BackendWrapper, "schedule_refresh", lambda self: None)
    http = FakeSession(
        FakeResponse({"authorizations": {"access_token": "at1", "refresh_token": "rt1"}}),
        requests.ConnectionError("down"),
        FakeResponse({"authorizations": {"access_token": "at3", "refresh_token": "rt3"}}),
    )
    w = BackendWrapper("api", "main", "https://api.example", api_key="k", session=http)
    assert w.refresh_auth_token()
    assert http.calls[2][0] == "https://api.example/auth/login"
    assert w._access_token == "at3"


def test_backend_failed_login():
    w = BackendWrapper("api", "main", "https://api.example", api_key="k",
                       session=FakeSession(FakeResponse({"error": "bad key"})))
    assert w._access_token is None
    assert w._refresh_timer is None


def test_refresh_timer_is_daemon_and_cancellable(monkeypatch):
    monkeypatch.setattr(pushtx_wrappers, "TOKEN_REFRESH_S", 3600)
    w = BackendWrapper("api", "main", "https://api.example", session=FakeSession())
    w.schedule_refresh()
    assert w._refresh_timer.daemon
    w.close()
    assert w._refresh_timer is None


def test_memory_wrapper():
    w = MemoryWrapper(accept=False)
    assert w.push_tx("00") is False
    assert w.pushed == ["00"]
    assert w.network is None


def test_registry_builds_wrappers():
    w = WRAPPERS["bitcoind"]("n1", "t", {"rpc": RPC})
    assert isinstance(w, BitcoindWrapper) and w.name == "n1"
    w = WRAPPERS["samourai-backend"]("b1", "main", {"url": "https://x"})
    assert isinstance(w, BackendWrapper) and w.url == "https://x"
    w = WRAPPERS["memory"]("m", None, {"accept": False})
    assert isinstance(w, MemoryWrapper) and not w.accept


def test_bitcoind_request_ids_are_unique_across_threads():
    ok = {"result": "ab" * 32, "error": None}
    http = FakeSession(*[FakeResponse(ok) for _ in range(200)])
    w = BitcoindWrapper("node", "main", RPC, session=http)

    def worker():
        for _ in range(25):
            w.push_tx("0100")

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads: t.start()
    for t in threads: t.join()
    ids = [kw["json"]["id"] for _, kw in http.calls]
    assert len(ids) == 200
    assert sorted(ids) == list(range(1, 201))
