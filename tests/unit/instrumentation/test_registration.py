"""
Tests for the Registration Guard

Uses a stand-in cassandra.cluster module installed into sys.modules.
"""

import inspect
import sys
import time
import types

import pytest
import wrapt

from cql_instrumentation.config import InstrumentationSettings
from cql_instrumentation.errors import ErrorCode, HookTargetError
from cql_instrumentation.instrumentation.registration import (
    DEFAULT_HOOKS,
    CassandraInstrumentor,
    Hook,
    install_instrumentation,
    resolve_hook,
)


class TestResolveHook:
    def test_resolves_class_attribute(self, fake_cassandra: types.ModuleType) -> None:
        owner, name = resolve_hook(Hook("cassandra.cluster", "Session.execute"))

        assert owner is fake_cassandra.Session
        assert name == "execute"

    def test_missing_module(self) -> None:
        with pytest.raises(HookTargetError) as exc_info:
            resolve_hook(Hook("no_such_driver_module.cluster", "Session.execute"))

        assert exc_info.value.error_code is ErrorCode.HOOK_TARGET_MISSING
        assert exc_info.value.details["module"] == "no_such_driver_module.cluster"

        payload = exc_info.value.to_dict()
        assert payload["error"] == "HookTargetError"
        assert payload["error_code"] == "HOOK_TARGET_MISSING"

    def test_missing_attribute(self, fake_cassandra: types.ModuleType) -> None:
        with pytest.raises(HookTargetError):
            resolve_hook(Hook("cassandra.cluster", "Session.execute_graph"))

        with pytest.raises(HookTargetError):
            resolve_hook(Hook("cassandra.cluster", "Cluster.connect"))

    def test_not_callable(self, fake_cassandra: types.ModuleType) -> None:
        fake_cassandra.Session.default_timeout = 10.0

        with pytest.raises(HookTargetError) as exc_info:
            resolve_hook(Hook("cassandra.cluster", "Session.default_timeout"))

        assert exc_info.value.error_code is ErrorCode.HOOK_NOT_CALLABLE


class TestCassandraInstrumentor:
    def test_default_hooks(self) -> None:
        assert {hook.key for hook in DEFAULT_HOOKS} == {
            "cassandra.cluster:Session.execute",
            "cassandra.cluster:Session.execute_async",
        }

    def test_skips_when_library_not_loaded(self, agent, settings, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delitem(sys.modules, "cassandra", raising=False)
        monkeypatch.delitem(sys.modules, "cassandra.cluster", raising=False)
        instrumentor = CassandraInstrumentor(agent, settings=settings)

        assert instrumentor.is_library_loaded() is False
        assert instrumentor.install() is False
        assert agent.messages == []

    @pytest.mark.parametrize("flag", ["disable_cassandra_instrumentation", "disable_database_instrumentation"])
    def test_skips_when_disabled(self, agent, fake_cassandra: types.ModuleType, flag: str) -> None:
        settings = InstrumentationSettings()
        setattr(settings.instrumentation, flag, True)
        original = fake_cassandra.Session.__dict__["execute"]
        instrumentor = CassandraInstrumentor(agent, settings=settings)

        assert instrumentor.is_enabled() is False
        assert instrumentor.install() is False
        assert fake_cassandra.Session.__dict__["execute"] is original
        assert agent.messages == []

    def test_install_reports_calls(self, agent, settings, fake_cassandra: types.ModuleType) -> None:
        instrumentor = CassandraInstrumentor(agent, settings=settings)

        assert instrumentor.install() is True
        assert agent.messages == ["Installing Cassandra instrumentation"]

        session = fake_cassandra.Session()
        assert session.execute("SELECT * FROM users") == ("rows", "SELECT * FROM users")
        future = session.execute_async("INSERT INTO users (id) VALUES (1)")
        assert future.result() == ("rows", "INSERT INTO users (id) VALUES (1)")

        # execute delegates to execute_async; the nested submission is not counted twice
        assert agent.scopes == [
            {"Database/CQL/select", "Datastore/all"},
            {"Database/CQL/insert", "Datastore/all"},
        ]
        assert [sample["query"] for sample in agent.full_samples] == [
            "SELECT * FROM users",
            "INSERT INTO users (id) VALUES (1)",
        ]
        assert session.calls == [
            ("execute", "SELECT * FROM users"),
            ("execute_async", "SELECT * FROM users"),
            ("execute_async", "INSERT INTO users (id) VALUES (1)"),
        ]

    def test_async_query_recorded_on_completion(self, agent, settings, fake_cassandra: types.ModuleType) -> None:
        CassandraInstrumentor(agent, settings=settings).install()
        session = fake_cassandra.Session()
        session.complete_immediately = False

        future = session.execute_async("SELECT * FROM users")
        assert agent.scopes == []

        time.sleep(0.05)
        future.complete()

        assert agent.scopes == [{"Database/CQL/select", "Datastore/all"}]
        assert agent.timings[0] >= 0.05
        assert agent.slow_samples[0]["query"] == "SELECT * FROM users"
        assert agent.full_samples[0]["elapsed"] >= 0.05

    def test_failed_async_query_is_recorded(self, agent, settings, fake_cassandra: types.ModuleType) -> None:
        CassandraInstrumentor(agent, settings=settings).install()

        future = fake_cassandra.Session().execute_async("FAIL")

        with pytest.raises(RuntimeError, match="driver error"):
            future.result()
        assert agent.scopes == [{"Database/CQL/other", "Datastore/all"}]

    def test_installed_hook_propagates_driver_errors(self, agent, settings, fake_cassandra: types.ModuleType) -> None:
        CassandraInstrumentor(agent, settings=settings).install()

        with pytest.raises(RuntimeError, match="driver error"):
            fake_cassandra.Session().execute("FAIL")

        assert len(agent.scopes) == 1
        assert len(agent.slow_samples) == 1

    def test_install_is_idempotent(self, agent, settings, fake_cassandra: types.ModuleType) -> None:
        instrumentor = CassandraInstrumentor(agent, settings=settings)

        assert instrumentor.install() is True
        patched = inspect.getattr_static(fake_cassandra.Session, "execute")
        assert instrumentor.install() is True
        assert CassandraInstrumentor(agent, settings=settings).install() is True

        assert inspect.getattr_static(fake_cassandra.Session, "execute") is patched
        assert agent.messages == ["Installing Cassandra instrumentation"]

        fake_cassandra.Session().execute("SELECT 1")
        assert len(agent.scopes) == 1

    def test_uninstall_restores_originals(self, agent, settings, fake_cassandra: types.ModuleType) -> None:
        original = fake_cassandra.Session.__dict__["execute"]
        instrumentor = CassandraInstrumentor(agent, settings=settings)
        instrumentor.install()

        instrumentor.uninstall()

        assert instrumentor.installed is False
        assert fake_cassandra.Session.__dict__["execute"] is original
        fake_cassandra.Session().execute("SELECT 1")
        assert agent.scopes == []

    def test_uninstall_keeps_wrapper_installed_over_ours(
        self, agent, settings, fake_cassandra: types.ModuleType
    ) -> None:
        instrumentor = CassandraInstrumentor(agent, settings=settings)
        instrumentor.install()
        seen: list[str] = []

        def other_wrapper(wrapped, instance, args, kwargs):  # type: ignore[no-untyped-def]
            seen.append(args[0])
            return wrapped(*args, **kwargs)

        outer = wrapt.wrap_function_wrapper(fake_cassandra.Session, "execute", other_wrapper)

        assert instrumentor.install() is True
        instrumentor.uninstall()

        assert inspect.getattr_static(fake_cassandra.Session, "execute") is outer
        assert instrumentor.installed is True
        fake_cassandra.Session().execute("SELECT 1")
        assert seen == ["SELECT 1"]
        assert agent.scopes == [{"Database/CQL/select", "Datastore/all"}]
        assert agent.messages == ["Installing Cassandra instrumentation"]

    def test_foreign_wrapper_is_not_taken_for_ours(self, agent, settings, fake_cassandra: types.ModuleType) -> None:
        outer = wrapt.wrap_function_wrapper(
            fake_cassandra.Session, "execute", lambda wrapped, instance, args, kwargs: wrapped(*args, **kwargs)
        )
        instrumentor = CassandraInstrumentor(agent, settings=settings)

        assert instrumentor.install() is True
        instrumentor.uninstall()

        assert inspect.getattr_static(fake_cassandra.Session, "execute") is outer
        assert instrumentor.installed is False

    def test_reinstall_after_uninstall(self, agent, settings, fake_cassandra: types.ModuleType) -> None:
        instrumentor = CassandraInstrumentor(agent, settings=settings)
        instrumentor.install()
        instrumentor.uninstall()

        assert instrumentor.install() is True
        assert agent.messages == ["Installing Cassandra instrumentation"] * 2

    def test_missing_hook_target_is_skipped(self, agent, settings, fake_cassandra: types.ModuleType) -> None:
        hooks = (
            Hook("cassandra.cluster", "Session.execute", kind="request"),
            Hook("cassandra.cluster", "Session.execute_graph", kind="request"),
        )
        instrumentor = CassandraInstrumentor(agent, settings=settings, hooks=hooks)

        assert instrumentor.install() is True
        fake_cassandra.Session().execute("SELECT 1")
        assert len(agent.scopes) == 1

    def test_request_hook_with_statement_name(self, agent, settings, monkeypatch: pytest.MonkeyPatch) -> None:
        class RequestLogger:
            def log(self, name: str, query: str) -> str:
                return f"{name}: {query}"

        module = types.ModuleType("cequel_like")
        module.RequestLogger = RequestLogger  # type: ignore[attr-defined]
        monkeypatch.setitem(sys.modules, "cequel_like", module)

        hooks = (Hook("cequel_like", "RequestLogger.log", kind="request", query_argument=1),)
        CassandraInstrumentor(agent, settings=settings, hooks=hooks).install()

        assert RequestLogger().log("Users", "garbled;;") == "Users: garbled;;"
        assert agent.scopes == [{"Database/CQL/other", "Datastore/all"}]
        assert agent.slow_samples[0]["context"].statement_name == "Users"

    def test_disabling_after_install_stops_recording(self, agent, settings, fake_cassandra: types.ModuleType) -> None:
        CassandraInstrumentor(agent, settings=settings).install()
        settings.instrumentation.disable_cassandra_instrumentation = True

        fake_cassandra.Session().execute("SELECT 1")

        assert agent.scopes == []


def test_install_instrumentation(agent, settings, fake_cassandra: types.ModuleType) -> None:
    instrumentor = install_instrumentation(agent, settings=settings)

    assert isinstance(instrumentor, CassandraInstrumentor)
    assert instrumentor.installed is True
    instrumentor.uninstall()
