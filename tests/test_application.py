"""Tests for routelet.core.application: the Router root object."""

import socket

import httpx
import pytest

from routelet.core.application import (
    Listener,
    Router,
    RouterState,
    default_error_handler,
)
from routelet.core.config import ListenConfig
from routelet.core.context import MISSING
from routelet.core.request import ConnectionInfo, Request
from routelet.utils.env import Env
from routelet.utils.logger import LogLevel


def _client(router: Router) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        transport=httpx.ASGITransport(app=router),
        base_url="http://testserver",
    )


class TestRegistration:
    def test_initial_state(self, router) -> None:
        assert router.state is RouterState.UNCONFIGURED
        assert router.routes == ()
        assert router.error_handler is default_error_handler

    def test_registration_configures(self, router) -> None:
        router.get("/", lambda ctx: ctx.text(200, "ok"))

        assert router.state is RouterState.CONFIGURED

    def test_use_configures(self, router) -> None:
        router.use(lambda ctx: None)

        assert router.state is RouterState.CONFIGURED
        assert len(router.middleware) == 1

    def test_verb_helpers(self, router) -> None:
        handler = lambda ctx: ctx.text(200, "ok")  # noqa: E731

        assert router.get("/a", handler) is handler
        router.post("/a", handler)
        router.put("/a", handler)
        router.delete("/a", handler)
        router.patch("/a", handler)

        assert [set(r.methods) for r in router.routes] == [
            {"GET"},
            {"POST"},
            {"PUT"},
            {"DELETE"},
            {"PATCH"},
        ]

    def test_route_with_several_methods(self, router) -> None:
        router.route(["get", "head"], "/health", lambda ctx: ctx.text(200, "ok"))

        assert router.routes[0].methods == frozenset({"GET", "HEAD"})

    def test_decorator_form(self, router) -> None:
        @router.get("/users/:id")
        def show_user(ctx):
            return ctx.json(200, ctx.params)

        assert callable(show_user)
        assert router.routes[0].handler is show_user

    def test_route_middleware_recorded(self, router) -> None:
        def auth(ctx):
            return None

        router.get("/a", lambda ctx: ctx.text(200, "ok"), auth)

        assert router.routes[0].middlewares == (auth,)

    def test_non_callable_handler(self, router) -> None:
        with pytest.raises(TypeError):
            router.get("/a", "not callable")
        assert router.routes == ()

    def test_non_callable_middleware(self, router) -> None:
        with pytest.raises(TypeError):
            router.use(42)
        with pytest.raises(TypeError):
            router.get("/a", lambda ctx: ctx.text(200, "ok"), None)
        with pytest.raises(TypeError):
            router.on_error("nope")
        with pytest.raises(TypeError):
            router.on_not_found(None)

    def test_empty_methods(self, router) -> None:
        with pytest.raises(ValueError):
            router.route([], "/a", lambda ctx: ctx.text(200, "ok"))


class TestDispatch:
    @pytest.mark.asyncio
    async def test_matched_route(self, router) -> None:
        router.get("/users/:id", lambda ctx: ctx.json(200, {"id": ctx.params["id"]}))

        response = await router.dispatch(Request.build("GET", "/users/42"))

        assert response.status_code == 200
        assert response.body == b'{"id":"42"}'

    @pytest.mark.asyncio
    async def test_first_registered_route_wins(self, router) -> None:
        router.get("/users/:id", lambda ctx: ctx.text(200, "generic"))
        router.get("/users/me", lambda ctx: ctx.text(200, "me"))

        response = await router.dispatch(Request.build("GET", "/users/me"))

        assert response.body == b"generic"

    @pytest.mark.asyncio
    async def test_global_then_route_middleware(self, router) -> None:
        order = []

        router.use(lambda ctx: order.append("global-1"), lambda ctx: order.append("global-2"))

        async def route_mw(ctx):
            order.append("route")

        def handler(ctx):
            order.append("handler")
            return ctx.text(200, "ok")

        router.get("/", handler, route_mw)
        await router.dispatch(Request.build("GET", "/"))

        assert order == ["global-1", "global-2", "route", "handler"]

    @pytest.mark.asyncio
    async def test_user_data_flows_to_handler(self, router) -> None:
        def auth(ctx):
            ctx.user_data.set("user", "ada")

        router.get("/me", lambda ctx: ctx.text(200, ctx.user_data.get("user")), auth)

        response = await router.dispatch(Request.build("GET", "/me"))

        assert response.body == b"ada"

    @pytest.mark.asyncio
    async def test_user_data_is_per_request(self, router) -> None:
        def handler(ctx):
            before = ctx.user_data.get("count")
            ctx.user_data.set("count", 1)
            return ctx.text(200, "fresh" if before is MISSING else "stale")

        router.get("/", handler)

        first = await router.dispatch(Request.build("GET", "/"))
        second = await router.dispatch(Request.build("GET", "/"))

        assert first.body == second.body == b"fresh"

    @pytest.mark.asyncio
    async def test_connection_info_reaches_context(self, router) -> None:
        info = ConnectionInfo(remote_addr=("10.0.0.1", 5000))
        router.get("/", lambda ctx: ctx.text(200, ctx.info.client_ip))

        response = await router.dispatch(Request.build("GET", "/"), info)

        assert response.body == b"10.0.0.1"

    @pytest.mark.asyncio
    async def test_route_registered_late_is_served(self, router) -> None:
        assert (await router.dispatch(Request.build("GET", "/late"))).status_code == 404

        router.get("/late", lambda ctx: ctx.text(200, "late"))

        assert (await router.dispatch(Request.build("GET", "/late"))).body == b"late"


class TestNotFound:
    @pytest.mark.asyncio
    async def test_default_not_found(self, router) -> None:
        response = await router.dispatch(Request.build("GET", "/missing"))

        assert response.status_code == 404
        assert response.body == b"Not Found"
        assert response.headers["Content-Type"] == "text/plain"

    @pytest.mark.asyncio
    async def test_method_mismatch_is_not_found(self, router) -> None:
        router.post("/items", lambda ctx: ctx.text(201, "created"))

        response = await router.dispatch(Request.build("GET", "/items"))

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_miss_skips_route_middleware(self, router) -> None:
        calls = []
        router.get("/a", lambda ctx: ctx.text(200, "a"), lambda ctx: calls.append("route"))

        await router.dispatch(Request.build("GET", "/b"))

        assert calls == []

    @pytest.mark.asyncio
    async def test_custom_handler_has_no_params(self, router) -> None:
        seen = []

        def not_found(ctx):
            seen.append(ctx.params)
            return ctx.json(404, {"error": "nothing at " + ctx.request.path})

        router.on_not_found(not_found)
        response = await router.dispatch(Request.build("GET", "/nowhere"))

        assert seen == [None]
        assert response.body == b'{"error":"nothing at /nowhere"}'

    @pytest.mark.asyncio
    async def test_snapshot_of_global_middleware(self, router) -> None:
        calls = []

        router.use(lambda ctx: calls.append("before"))
        router.on_not_found(lambda ctx: ctx.text(404, "custom"))
        router.use(lambda ctx: calls.append("after"))

        response = await router.dispatch(Request.build("GET", "/missing"))

        assert response.body == b"custom"
        assert calls == ["before"]

    @pytest.mark.asyncio
    async def test_default_handler_ignores_later_use(self, router) -> None:
        calls = []
        router.use(lambda ctx: calls.append("global"))

        response = await router.dispatch(Request.build("GET", "/missing"))

        assert response.status_code == 404
        assert calls == []

    @pytest.mark.asyncio
    async def test_failing_global_middleware_on_not_found(self, router) -> None:
        def fails(ctx):
            raise RuntimeError("blocked")

        router.use(fails)
        router.on_not_found(lambda ctx: ctx.text(404, "custom"))

        response = await router.dispatch(Request.build("GET", "/missing"))

        assert response.status_code == 500
        assert response.body == b"Error: blocked"

    @pytest.mark.asyncio
    async def test_miss_logged_at_debug(self, router, recorder) -> None:
        await router.dispatch(Request.build("GET", "/missing"))

        debug = [r for r in recorder.records if r.level == LogLevel.DEBUG]
        assert debug[0].message == "No route matched"
        assert debug[0].context == {"method": "GET", "path": "/missing", "allowed": []}

    @pytest.mark.asyncio
    async def test_miss_logs_allowed_methods(self, router, recorder) -> None:
        router.post("/items", lambda ctx: ctx.text(201, "created"))

        await router.dispatch(Request.build("GET", "/items"))

        debug = [r for r in recorder.records if r.level == LogLevel.DEBUG]
        assert debug[0].context["allowed"] == ["POST"]


class TestErrors:
    @pytest.mark.asyncio
    async def test_default_error_handler(self, router) -> None:
        def fails(ctx):
            raise RuntimeError("boom")

        router.get("/", lambda ctx: ctx.text(200, "ok"), fails)

        response = await router.dispatch(Request.build("GET", "/"))

        assert response.status_code == 500
        assert response.body == b"Error: boom"
        assert response.headers["Content-Type"] == "text/plain"

    @pytest.mark.asyncio
    async def test_default_error_handler_key_error(self, router) -> None:
        def fails(ctx):
            raise KeyError("k")

        router.get("/", lambda ctx: ctx.text(200, "ok"), fails)

        response = await router.dispatch(Request.build("GET", "/"))

        assert response.status_code == 500
        assert response.body == b"Error: k"

    def test_default_error_message_without_args(self, make_context) -> None:
        response = default_error_handler(make_context(), RuntimeError())

        assert response.body == b"Error: "

    @pytest.mark.asyncio
    async def test_on_error_applies_to_earlier_routes(self, router) -> None:
        def fails(ctx):
            raise PermissionError("no token")

        router.get("/", lambda ctx: ctx.text(200, "ok"), fails)
        router.on_error(lambda ctx, error: ctx.json(401, {"error": str(error)}))

        response = await router.dispatch(Request.build("GET", "/"))

        assert response.status_code == 401
        assert response.body == b'{"error":"no token"}'

    @pytest.mark.asyncio
    async def test_handler_skipped_on_middleware_failure(self, router) -> None:
        calls = []

        def fails(ctx):
            raise RuntimeError("x")

        def handler(ctx):
            calls.append("handler")
            return ctx.text(200, "ok")

        router.use(fails)
        router.get("/", handler)
        await router.dispatch(Request.build("GET", "/"))

        assert calls == []

    @pytest.mark.asyncio
    async def test_handler_error_propagates(self, router) -> None:
        error_calls = []

        def handler(ctx):
            raise ZeroDivisionError("division by zero")

        router.get("/", handler)
        router.on_error(lambda ctx, error: error_calls.append(error))

        with pytest.raises(ZeroDivisionError):
            await router.dispatch(Request.build("GET", "/"))
        assert error_calls == []

    @pytest.mark.asyncio
    async def test_serialization_error_in_handler_propagates(self, router) -> None:
        def handler(ctx):
            data = {}
            data["self"] = data
            return ctx.json(200, data)

        router.get("/", handler)

        with pytest.raises(TypeError):
            await router.dispatch(Request.build("GET", "/"))


class TestSnapshots:
    @pytest.mark.asyncio
    async def test_use_does_not_reach_earlier_routes(self, router) -> None:
        calls = []

        router.get("/early", lambda ctx: ctx.text(200, "early"))
        router.use(lambda ctx: calls.append("global"))
        router.get("/late", lambda ctx: ctx.text(200, "late"))

        await router.dispatch(Request.build("GET", "/early"))
        assert calls == []

        await router.dispatch(Request.build("GET", "/late"))
        assert calls == ["global"]


class TestASGI:
    @pytest.mark.asyncio
    async def test_round_trip(self, router) -> None:
        router.get("/users/:id", lambda ctx: ctx.json(200, {
            "id": ctx.params["id"],
            "q": ctx.request.query.get("q"),
            "ip": ctx.info.client_ip,
        }))

        async with _client(router) as client:
            response = await client.get("/users/7?q=find")

        assert response.status_code == 200
        assert response.headers["content-type"] == "application/json"
        assert response.json() == {"id": "7", "q": "find", "ip": "127.0.0.1"}

    @pytest.mark.asyncio
    async def test_encoded_slash_stays_in_one_segment(self, router) -> None:
        router.get("/users/:id", lambda ctx: ctx.json(200, {"id": ctx.params["id"]}))

        async with _client(router) as client:
            response = await client.get("/users/a%2Fb")

        assert response.status_code == 200
        assert response.json() == {"id": "a%2Fb"}

    @pytest.mark.asyncio
    async def test_post_body(self, router) -> None:
        async def create(ctx):
            data = await ctx.request.json()
            return ctx.json(201, {"created": data["name"]})

        router.post("/items", create)

        async with _client(router) as client:
            response = await client.post("/items", json={"name": "widget"})

        assert response.status_code == 201
        assert response.json() == {"created": "widget"}

    @pytest.mark.asyncio
    async def test_large_integer(self, router) -> None:
        router.get("/big", lambda ctx: ctx.json(200, {"n": 2**53 + 1}))

        async with _client(router) as client:
            response = await client.get("/big")

        assert response.json() == {"n": "9007199254740993"}

    @pytest.mark.asyncio
    async def test_html_and_not_found(self, router) -> None:
        router.get("/", lambda ctx: ctx.html(200, "<h1>Hi</h1>"))

        async with _client(router) as client:
            page = await client.get("/")
            missing = await client.get("/missing")

        assert page.headers["content-type"] == "text/html"
        assert page.text == "<h1>Hi</h1>"
        assert missing.status_code == 404
        assert missing.text == "Not Found"

    @pytest.mark.asyncio
    async def test_middleware_error_over_http(self, router) -> None:
        def fails(ctx):
            raise RuntimeError("nope")

        router.get("/", lambda ctx: ctx.text(200, "ok"), fails)

        async with _client(router) as client:
            response = await client.get("/")

        assert response.status_code == 500
        assert response.text == "Error: nope"

    @pytest.mark.asyncio
    async def test_lifespan(self, router) -> None:
        messages = iter([
            {"type": "lifespan.startup"},
            {"type": "lifespan.shutdown"},
        ])
        sent = []

        async def receive():
            return next(messages)

        async def send(message):
            sent.append(message)

        await router({"type": "lifespan"}, receive, send)

        assert sent == [
            {"type": "lifespan.startup.complete"},
            {"type": "lifespan.shutdown.complete"},
        ]

    @pytest.mark.asyncio
    async def test_unsupported_scope(self, router) -> None:
        async def receive():
            return {}

        async def send(message):
            return None

        with pytest.raises(ValueError):
            await router({"type": "websocket"}, receive, send)


class TestListen:
    def test_create_listener_uses_environment(self, logger) -> None:
        router = Router(logger=logger, env=Env({"LISTEN_HOST": "127.0.0.1", "PORT": "9123"}))

        listener = router.create_listener()

        assert isinstance(listener, Listener)
        assert (listener.host, listener.port) == ("127.0.0.1", 9123)
        assert not listener.started
        assert router.state is RouterState.LISTENING

    def test_explicit_options_win(self, logger) -> None:
        router = Router(logger=logger, env=Env({"PORT": "9123"}))

        listener = router.create_listener({"port": 9200})

        assert listener.port == 9200
        assert listener.config.host == "0.0.0.0"

    def test_server_options_passed_to_uvicorn(self, router) -> None:
        listener = router.create_listener(
            ListenConfig(host="127.0.0.1", port=0, server_options={"loop": "asyncio"})
        )

        assert listener.server.config.loop == "asyncio"
        assert listener.server.config.log_level == "debug"

    def test_listen_serves_requests(self, router, recorder) -> None:
        router.get("/ping", lambda ctx: ctx.text(200, "pong"))

        listener = router.listen({"host": "127.0.0.1", "port": 0, "loop": "asyncio"})
        try:
            assert listener.wait_started(timeout=10)
            assert listener.port != 0

            with httpx.Client(trust_env=False) as client:
                response = client.get(f"http://127.0.0.1:{listener.port}/ping")

            assert response.status_code == 200
            assert response.text == "pong"
            assert f"Listening to 127.0.0.1:{listener.port}" in recorder.messages(LogLevel.INFO)
        finally:
            listener.shutdown(timeout=10)

    def test_listen_port_in_use(self, router, recorder) -> None:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as taken:
            taken.bind(("127.0.0.1", 0))
            taken.listen(1)
            port = taken.getsockname()[1]

            with pytest.raises(RuntimeError, match=f"127.0.0.1:{port}"):
                router.listen({"host": "127.0.0.1", "port": port, "loop": "asyncio"})

        assert router.state is not RouterState.LISTENING
        assert "Server failed to start" in recorder.messages(LogLevel.ERROR)

    def test_listener_cannot_start_twice(self, router) -> None:
        listener = router.listen({"host": "127.0.0.1", "port": 0, "loop": "asyncio"})
        try:
            with pytest.raises(RuntimeError):
                listener.start()
        finally:
            listener.wait_started(timeout=10)
            listener.shutdown(timeout=10)
