import asyncio
from pathlib import Path

from canvas_player import player
from canvas_player.controller import SessionController
from canvas_player.economy import Ledger
from canvas_player.navigator import GraphNavigator
from canvas_player.settings import Settings
from canvas_player.storage import FileGraphStore
from canvas_player.timing import TimerDisplay


def scripted_input(monkeypatch, answers):
    pending = list(answers)

    async def fake_read_input(prompt: str = "") -> str:
        return pending.pop(0)

    monkeypatch.setattr(player, "read_input", fake_read_input)
    return pending


def test_terminal_presenter_renders_timer() -> None:
    lines = []
    presenter = player.TerminalPresenter(print_func=lines.append)
    presenter.render_timer(TimerDisplay("countdown", -2000, "-00:02", True))
    presenter.render_timer(TimerDisplay("countup", 5000, "00:05", False))
    assert lines == ["[Timer] Remaining: -00:02 (over time)", "[Timer] Elapsed: 00:05"]


def test_play_walks_to_the_end(tmp_path: Path, write_canvas, monkeypatch, capsys) -> None:
    write_canvas(
        "door.canvas",
        [
            {"id": "A", "type": "text", "text": "Hall"},
            {"id": "B", "type": "text", "text": "Door"},
            {"id": "C", "type": "text", "text": "Vault"},
        ],
        [
            {"id": "e1", "fromNode": "A", "toNode": "B", "label": "{set:hasKey=true} Go"},
            {"id": "e2", "fromNode": "B", "toNode": "C", "label": "{if:hasKey} Open door"},
        ],
    )
    pending = scripted_input(monkeypatch, ["9", "1", "1", "e"])
    lines = []
    navigator = GraphNavigator(FileGraphStore(tmp_path), Settings(start_text=""), print_func=lines.append)
    controller = SessionController(navigator)
    presenter = player.TerminalPresenter(print_func=lines.append)

    asyncio.run(
        player.play(controller, presenter, "door.canvas", Ledger("dev"), tmp_path / "ledger.json", resume=False)
    )

    assert pending == []
    assert "  1. Go" in lines
    assert "  1. Open door" in lines
    assert "  End of path. E. Finish" in lines
    out = capsys.readouterr().out
    assert "[!] Pick a choice between 0 and 0." in out
    assert "[#] Session stopped." in out


def test_play_prompts_for_missing_variables(tmp_path: Path, write_canvas, monkeypatch, capsys) -> None:
    write_canvas(
        "door.canvas",
        [{"id": "B", "type": "text", "text": "Door"}, {"id": "C", "type": "text", "text": "Vault"}],
        [{"id": "e2", "fromNode": "B", "toNode": "C", "label": "{if:hasKey} Open door"}],
    )
    scripted_input(monkeypatch, ["t", "1", "e"])
    lines = []
    navigator = GraphNavigator(FileGraphStore(tmp_path), Settings(start_text=""), print_func=lines.append)
    presenter = player.TerminalPresenter(print_func=lines.append)

    asyncio.run(
        player.play(
            SessionController(navigator), presenter, "door.canvas", Ledger("dev"), tmp_path / "l.json", resume=False
        )
    )

    assert "  - hasKey" in lines
    assert "  1. Open door" in lines
    assert "[#] Session stopped." in capsys.readouterr().out
