import uvicorn

import server


class _DummyRunner:
    def __init__(self) -> None:
        self.calls: list[tuple] = []

    def __call__(self, app, **kwargs) -> None:
        self.calls.append((app, kwargs))


def test_main_runs_uvicorn_with_local_defaults(monkeypatch) -> None:
    runner = _DummyRunner()
    sentinel_app = object()
    monkeypatch.setattr(server, "load_env", lambda: None)
    monkeypatch.setattr(server, "create_app", lambda settings: sentinel_app)
    monkeypatch.setattr(uvicorn, "run", runner)
    monkeypatch.delenv("APP_HOST", raising=False)
    monkeypatch.delenv("APP_PORT", raising=False)

    server.main()

    assert runner.calls == [(sentinel_app, {"host": "127.0.0.1", "port": 8000, "log_level": "info"})]


def test_main_reads_host_and_port_from_env(monkeypatch) -> None:
    runner = _DummyRunner()
    monkeypatch.setattr(server, "load_env", lambda: None)
    monkeypatch.setattr(server, "create_app", lambda settings: "app")
    monkeypatch.setattr(uvicorn, "run", runner)
    monkeypatch.setenv("APP_HOST", "0.0.0.0")
    monkeypatch.setenv("APP_PORT", "9100")

    server.main()

    assert runner.calls == [("app", {"host": "0.0.0.0", "port": 9100, "log_level": "info"})]
