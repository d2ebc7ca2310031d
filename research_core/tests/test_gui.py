import pytest

pytest.importorskip("tkinter")

from research_core.gui.app import App


def _bare_app(state):
    app = App.__new__(App)
    app.send_btn = {"state": state}
    app.sent = []
    app.on_send = lambda: app.sent.append(True)
    return app


def test_return_key_ignored_while_send_disabled():
    app = _bare_app("disabled")
    assert app.on_send_event(None) == "break"
    assert app.sent == []


def test_return_key_sends_when_enabled():
    app = _bare_app("normal")
    assert app.on_send_event(None) == "break"
    assert app.sent == [True]
