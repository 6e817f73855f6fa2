#!/usr/bin/env python3
"""
Canvas Player: terminal front end
- Plays a .canvas graph node by node; choices come from edge labels.
- {set:var=true} and {if:expr} directives drive branching.
- Nested .canvas cards are entered and returned from with isolated variables.
- Timeboxing learns how long each node takes and awards points for good pacing.
Usage: python3 -m canvas_player.player path/to/graph.canvas
"""

import argparse
import asyncio
import sys
from dataclasses import replace
from pathlib import Path

if __package__ in (None, ""):
    sys.path.insert(0, str(Path(__file__).resolve().parent.parent))
    from canvas_player.complexity import calculate_metrics, compute_score
    from canvas_player.controller import SessionController
    from canvas_player.device import get_or_create_device_id
    from canvas_player.economy import load_ledger, save_ledger
    from canvas_player.graph import GraphLoadError
    from canvas_player.navigator import GraphNavigator, NavigationError, NavigatorStatus, render_scene
    from canvas_player.ownership import FileSnapshotStore, SessionOwnershipCoordinator
    from canvas_player.platform import default_data_dir
    from canvas_player.resume import ResumeStore
    from canvas_player.settings import SETTINGS_PATH, load_settings
    from canvas_player.shop_catalog import SHOP_ITEMS
    from canvas_player.storage import FileGraphStore
    from canvas_player.timing import TimingTracker
    from canvas_player.timing_storage import NodeTimingStore
else:
    from .complexity import calculate_metrics, compute_score
    from .controller import SessionController
    from .device import get_or_create_device_id
    from .economy import load_ledger, save_ledger
    from .graph import GraphLoadError
    from .navigator import GraphNavigator, NavigationError, NavigatorStatus, render_scene
    from .ownership import FileSnapshotStore, SessionOwnershipCoordinator
    from .platform import default_data_dir
    from .resume import ResumeStore
    from .settings import SETTINGS_PATH, load_settings
    from .shop_catalog import SHOP_ITEMS
    from .storage import FileGraphStore
    from .timing import TimingTracker
    from .timing_storage import NodeTimingStore

LEDGER_FILENAME = "ledger.json"


def emit_print(*args, **kwargs) -> None:
    print(*args, **kwargs)


async def read_input(prompt: str = "") -> str:
    return await asyncio.to_thread(input, prompt)


class TerminalPresenter:
    def __init__(self, print_func=emit_print) -> None:
        self.print = print_func

    def render_timer(self, display) -> None:
        label = "Remaining" if display.mode == "countdown" else "Elapsed"
        suffix = " (over time)" if display.overrun else ""
        self.print(f"[Timer] {label}: {display.text}{suffix}")

    def render_missing_variable_prompt(self, scene) -> None:
        self.print("")
        self.print(scene.text)
        self.print("The next choices depend on variables that have no value yet:")
        for name in scene.missing_variables:
            self.print(f"  - {name}")

    def render_choices(self, scene) -> None:
        if scene.node is None:
            return
        self.print("")
        if scene.depth:
            self.print(f"[Nested graph, depth {scene.depth}: {scene.graph_id}]")
        self.print(scene.text)
        if scene.read_only:
            self.print("(Read-only: this session is active on another device.)")
        if scene.status is NavigatorStatus.NAVIGATING:
            for choice in scene.choices:
                marker = " >>" if choice.enters_sub_graph else ""
                self.print(f"  {choice.index + 1}. {choice.text or '(continue)'}{marker}")
        elif scene.status is NavigatorStatus.RETURN_AVAILABLE:
            self.print("  No choices left here. R. Return to the parent graph")
        elif scene.status is NavigatorStatus.END_OF_PATH:
            self.print("  End of path. E. Finish")


def show_help() -> None:
    emit_print("Commands: <number> choose, B back, R return to parent, E end path,")
    emit_print("          W wallet, S shop, T take over, Q stop and quit.")


def show_wallet(ledger) -> None:
    emit_print(f"[Wallet] Balance: {ledger.balance} points")
    emit_print(f"[Wallet] Sticker: {ledger.equipped_sticker_id}")


async def shop_menu(ledger, ledger_path) -> None:
    while True:
        emit_print("\n=== Sticker Shop ===")
        emit_print(f"Balance: {ledger.balance}")
        for idx, item in enumerate(SHOP_ITEMS, start=1):
            if ledger.equipped_sticker_id == item.id:
                status = "equipped"
            elif ledger.is_owned(item.id):
                status = "owned"
            else:
                status = f"{item.cost} pts"
            emit_print(f"{idx}. {item.emoji} {item.name} [{status}] {item.description}")
        emit_print("Enter a number to buy or equip, Q to go back.")
        raw = (await read_input("Shop> ")).strip().lower()
        if raw in {"q", ""}:
            return
        if not raw.isdigit() or not (1 <= int(raw) <= len(SHOP_ITEMS)):
            emit_print("Pick a valid item number.")
            continue
        item = SHOP_ITEMS[int(raw) - 1]
        if not ledger.is_owned(item.id):
            result = ledger.purchase(item.id)
            if not result.ok:
                emit_print(f"[!] Purchase failed: {result.reason}")
                continue
            emit_print(f"[Shop] Bought {item.name}.")
        ledger.equip_sticker(item.id)
        save_ledger(ledger, ledger_path)
        emit_print(f"[Shop] Equipped {item.name}.")


async def tick_timer(tracker, presenter, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        display = tracker.display()
        if display is not None:
            presenter.render_timer(display)


async def prompt_missing_variables(controller, scene):
    for name in scene.missing_variables:
        raw = (await read_input(f"Value for '{name}' (t/f, blank = false): ")).strip().lower()
        if raw in {"t", "true", "y", "yes", "1"}:
            scene = await controller.set_variable(name, True)
        elif raw in {"f", "false", "n", "no", "0", ""}:
            scene = await controller.set_variable(name, False)
        if scene.read_only:
            return scene
    return await controller.continue_()


async def play(controller, presenter, root_graph, ledger, ledger_path, *, resume=True, from_node=None):
    if from_node:
        scene = await controller.play_from_node(root_graph, from_node)
    elif resume:
        scene = await controller.resume(root_graph)
    else:
        scene = await controller.start(root_graph)

    while True:
        if scene.notice:
            emit_print(f"[#] {scene.notice}")
        if scene.error is not None:
            emit_print(f"[!] {scene.error}")
            if controller.navigator.session is None:
                answer = (await read_input("Start from the beginning? (y/n): ")).strip().lower()
                if answer not in {"y", "yes"}:
                    return
                scene = await controller.start(root_graph)
                continue
            scene = controller.navigator.scene()
        if scene.outcome is not None and scene.outcome.points:
            emit_print(f"[Wallet] Balance: {ledger.balance} points")
            save_ledger(ledger, ledger_path)
        if scene.status is NavigatorStatus.STOPPED:
            emit_print("[#] Session stopped.")
            return

        render_scene(presenter, scene)

        if scene.status is NavigatorStatus.AWAITING_INPUT and not scene.read_only:
            scene = await prompt_missing_variables(controller, scene)
            continue

        raw = (await read_input("> ")).strip()
        choice = raw.lower()
        try:
            if choice.isdigit():
                scene = await controller.choose(int(choice) - 1)
            elif choice == "b":
                scene = await controller.back()
            elif choice == "r":
                scene = await controller.return_to_parent()
            elif choice == "e":
                scene = await controller.end_path()
            elif choice == "t":
                scene = await controller.take_over()
            elif choice == "q":
                if controller.read_only:
                    return
                scene = await controller.stop()
            elif choice == "w":
                show_wallet(ledger)
            elif choice == "s":
                await shop_menu(ledger, ledger_path)
            elif choice in {"", "l"}:
                scene = replace(controller.navigator.scene(), read_only=controller.read_only)
            else:
                show_help()
        except NavigationError as exc:
            emit_print(f"[!] {exc}")


async def main():
    parser = argparse.ArgumentParser(description="Play a canvas graph in the terminal.")
    parser.add_argument("graph", help="Path to the root .canvas file.")
    parser.add_argument("--settings", default=str(SETTINGS_PATH), help="Settings JSON file.")
    parser.add_argument("--data-dir", default=None, help="Where resume, ledger and device files live.")
    parser.add_argument("--shared-dir", default=None, help="Synced folder holding the shared session snapshot.")
    parser.add_argument("--restart", action="store_true", help="Ignore any saved position.")
    parser.add_argument("--from-node", default=None, help="Start at a specific node id.")
    parser.add_argument("--live-timer", action="store_true", help="Print the timer every tick.")
    args = parser.parse_args()

    settings = load_settings(args.settings)
    graph_path = Path(args.graph).resolve()
    data_dir = Path(args.data_dir) if args.data_dir else default_data_dir()
    shared_dir = Path(args.shared_dir) if args.shared_dir else data_dir

    store = FileGraphStore(graph_path.parent)
    device_id = get_or_create_device_id(data_dir)
    ledger_path = data_dir / LEDGER_FILENAME
    ledger = load_ledger(ledger_path, device_id)
    tracker = TimingTracker(
        NodeTimingStore(store, print_func=emit_print),
        ledger=ledger,
        enabled=settings.enable_timeboxing,
        print_func=emit_print,
    )
    navigator = GraphNavigator(
        store,
        settings,
        tracker=tracker,
        resume_store=ResumeStore(data_dir, print_func=emit_print),
        print_func=emit_print,
    )
    coordinator = SessionOwnershipCoordinator(
        FileSnapshotStore(shared_dir), device_id, settings, print_func=emit_print
    )
    presenter = TerminalPresenter()

    def on_scene(scene):
        # Remote changes arrive while the prompt is waiting.
        if scene.read_only and scene.notice is None:
            render_scene(presenter, scene)
        elif scene.status is NavigatorStatus.STOPPED and scene.notice:
            emit_print(f"[#] {scene.notice}")

    controller = SessionController(navigator, coordinator, on_scene=on_scene, print_func=emit_print)

    if settings.show_complexity_score:
        try:
            metrics = calculate_metrics(store.load_graph(graph_path.name))
        except GraphLoadError as exc:
            emit_print(f"[!] Could not score graph: {exc}")
        else:
            emit_print(f"[#] Complexity score: {compute_score(metrics, settings.complexity_weights)}")

    emit_print(f"\n=== {graph_path.stem} ===")
    emit_print(f"[Device] {device_id}")
    show_help()

    background = [asyncio.create_task(coordinator.watch())]
    if args.live_timer:
        background.append(asyncio.create_task(tick_timer(tracker, presenter, settings.timer_tick_seconds)))
    try:
        await play(
            controller,
            presenter,
            graph_path.name,
            ledger,
            ledger_path,
            resume=not args.restart,
            from_node=args.from_node,
        )
    finally:
        for task in background:
            task.cancel()
        await controller.flush()
        save_ledger(ledger, ledger_path)


def run() -> None:
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        emit_print("\n[Interrupted] Bye.")


if __name__ == "__main__":
    run()
