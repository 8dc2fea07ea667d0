"""Tests for the event emitter shared by transports and streams."""
from vidstream.services.events import EventEmitter


class TestEventEmitter:
    """Tests for subscribe, unsubscribe and one-shot handlers."""

    def test_handlers_run_in_order(self) -> None:
        emitter = EventEmitter()
        calls: list[str] = []
        emitter.on("data", lambda chunk: calls.append(f"a:{chunk}"))
        emitter.on("data", lambda chunk: calls.append(f"b:{chunk}"))

        assert emitter.emit("data", "x")
        assert calls == ["a:x", "b:x"]

    def test_emit_without_handlers(self) -> None:
        assert not EventEmitter().emit("end")

    def test_unsubscribe(self) -> None:
        emitter = EventEmitter()
        calls: list[int] = []
        detach = emitter.on("progress", calls.append)

        emitter.emit("progress", 1)
        detach()
        emitter.emit("progress", 2)

        assert calls == [1]
        assert emitter.listener_count("progress") == 0

    def test_once(self) -> None:
        emitter = EventEmitter()
        calls: list[int] = []
        emitter.once("end", lambda: calls.append(1))

        emitter.emit("end")
        emitter.emit("end")

        assert calls == [1]

    def test_handler_may_unsubscribe_itself_during_emit(self) -> None:
        emitter = EventEmitter()
        calls: list[str] = []

        def first() -> None:
            calls.append("first")
            emitter.off("tick", first)

        emitter.on("tick", first)
        emitter.on("tick", lambda: calls.append("second"))
        emitter.emit("tick")
        emitter.emit("tick")

        assert calls == ["first", "second", "second"]
