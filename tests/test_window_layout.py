import json
import pathlib
import sys
from datetime import datetime, timedelta, timezone

import pytest
from loguru import logger

repo_root = pathlib.Path(__file__).resolve().parents[1]
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

import window_layout as wl
from desktop import MemoryDesktop
from layout_model import DisplayInfo, Frame
from layout_triggers import ChangeSource, EventChannel, EventKind, LayoutEvent

T0 = datetime(2026, 10, 1, 9, 0, tzinfo=timezone.utc)


class _Clock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def desk():
    return MemoryDesktop(displays=[DisplayInfo("d1", "Main", (1920, 1080), (0, 0))])


@pytest.fixture
def settings(tmp_path):
    return wl.LayoutSettings(storage_dir=str(tmp_path / "layouts"))


def _service(desk, settings, clock=None, sleeps=None, **kwargs):
    return wl.LayoutService(desk, settings, clock=clock or _Clock(T0),
                            sleep=(sleeps.append if sleeps is not None else lambda _s: None),
                            **kwargs)


def _write_config(path, **values):
    path.write_text(json.dumps(values), encoding="utf-8")
    return path


# ── capture and save ─────────────────────────────────────────────────────
def test_capture_and_save_writes_configuration(desk, settings):
    desk.add_window("com.editor", "main.py", (10, 10, 800, 600))
    desk.add_window("com.editor", "", (0, 0, 300, 300))
    service = _service(desk, settings)

    config = service.capture_and_save()

    assert config.identifier == desk.current_configuration_identifier()
    assert [w.window_title for w in config.windows] == ["main.py"]
    assert config.windows[0].display_identifier == "d1"
    assert service.store.load(config.identifier) == config


def test_unseen_windows_survive_until_stale(desk, settings):
    clock = _Clock(T0)
    service = _service(desk, settings, clock=clock)
    hidden = desk.add_window("com.mail", "Inbox", (0, 0, 500, 500))
    desk.add_window("com.editor", "notes.txt", (600, 0, 500, 500))
    service.capture_and_save()

    # Inbox moved to another virtual desktop: no longer enumerated.
    desk.windows.remove(hidden)
    clock.now = T0 + timedelta(days=2)
    kept = service.capture_and_save()
    assert sorted(w.window_title for w in kept.windows) == ["Inbox", "notes.txt"]

    clock.now = T0 + timedelta(days=8)
    pruned = service.capture_and_save()
    assert [w.window_title for w in pruned.windows] == ["notes.txt"]


def test_corrupt_existing_document_is_replaced(desk, settings):
    service = _service(desk, settings)
    layouts = settings.layouts_dir
    layouts.mkdir(parents=True)
    (layouts / f"{desk.current_configuration_identifier()}.json").write_text("oops", encoding="utf-8")
    desk.add_window("com.a", "Doc", (0, 0, 100, 100))

    config = service.capture_and_save()

    assert [w.window_title for w in config.windows] == ["Doc"]


def test_save_failure_returns_none(desk, tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("x", encoding="utf-8")
    service = _service(desk, wl.LayoutSettings(storage_dir=str(blocker / "layouts")))
    desk.add_window("com.a", "Doc", (0, 0, 100, 100))

    assert service.capture_and_save() is None


def test_separate_monitor_setups_get_separate_documents(desk, settings):
    service = _service(desk, settings)
    desk.add_window("com.a", "Doc", (0, 0, 100, 100))
    first = service.capture_and_save().identifier

    desk.displays.append(DisplayInfo("d2", "Side", (1920, 1080), (1920, 0)))
    second = service.capture_and_save().identifier

    assert first != second
    assert service.list_configurations() == sorted([first, second])
    assert service.clear_all() == 2
    assert service.list_configurations() == []


# ── restore ──────────────────────────────────────────────────────────────
def test_restore_moves_windows_back(desk, settings):
    service = _service(desk, settings)
    window = desk.add_window("com.a", "Doc", (40, 50, 700, 500))
    service.capture_and_save()
    window.frame = Frame(900, 900, 200, 200)

    results = service.restore()

    assert [r.success for r in results] == [True]
    assert desk.window(window.handle).frame == Frame(40, 50, 700, 500)


# ── events and policy ────────────────────────────────────────────────────
@pytest.mark.parametrize("previous,new,connect,disconnect,expected", [
    (1, 2, True, True, True),
    (2, 1, True, True, True),
    (1, 2, False, True, False),
    (2, 1, True, False, False),
    (2, 2, True, True, False),
])
def test_display_change_policy(desk, settings, previous, new, connect, disconnect, expected):
    service = _service(desk, settings)
    service.set_restore_policy(on_connect=connect, on_disconnect=disconnect)
    assert service.should_restore_for_displays(previous, new) is expected


def test_display_change_waits_settle_delay_before_restore(desk, settings, monkeypatch):
    settings.settle_delay = 1.5
    sleeps = []
    order = []
    service = _service(desk, settings, sleeps=sleeps)
    monkeypatch.setattr(service, "restore", lambda: order.append(("restore", list(sleeps))))

    service.handle_event(LayoutEvent(EventKind.DISPLAYS_CHANGED, 1, 2))

    assert order == [("restore", [1.5])]


def test_desktop_change_restores_only_when_enabled(desk, settings, monkeypatch):
    service = _service(desk, settings)
    restores = []
    monkeypatch.setattr(service, "restore", lambda: restores.append(1))

    service.handle_event(LayoutEvent(EventKind.DESKTOP_CHANGED))
    assert restores == []

    service.set_restore_policy(on_desktop_change=True)
    service.handle_event(LayoutEvent(EventKind.DESKTOP_CHANGED))
    assert restores == [1]


def test_paused_service_skips_scheduled_saves(desk, settings):
    service = _service(desk, settings)
    desk.add_window("com.a", "Doc", (0, 0, 100, 100))

    service.handle_event(LayoutEvent(EventKind.PAUSE))
    service.handle_event(LayoutEvent(EventKind.SAVE))
    assert service.list_configurations() == []

    service.handle_event(LayoutEvent(EventKind.RESUME))
    service.handle_event(LayoutEvent(EventKind.SAVE))
    assert len(service.list_configurations()) == 1


def test_run_keeps_going_after_a_failing_event(desk, settings, monkeypatch):
    service = _service(desk, settings)
    channel = EventChannel()
    handled = []

    def boom():
        raise RuntimeError("backend went away")

    monkeypatch.setattr(service, "restore", boom)
    monkeypatch.setattr(service, "capture_and_save", lambda: handled.append("save"))
    for kind in (EventKind.RESTORE, EventKind.SAVE, EventKind.STOP, EventKind.SAVE):
        channel.post(LayoutEvent(kind))

    service.run(channel, poll=0.01)

    assert handled == ["save"]


def test_run_daemon_saves_and_cleans_up(desk, settings):
    desk.add_window("com.a", "Doc", (0, 0, 100, 100))
    desk.desktop_changes = ChangeSource()
    service = _service(desk, settings)
    channel = EventChannel()
    channel.post(LayoutEvent(EventKind.SAVE))
    channel.post(LayoutEvent(EventKind.STOP))

    wl.run_daemon(service, channel)

    assert len(service.list_configurations()) == 1
    assert not service.scheduler.is_running
    assert desk.desktop_changes.observer_count == 0


# ── settings ─────────────────────────────────────────────────────────────
def test_missing_config_gives_defaults(tmp_path):
    settings = wl.load_settings(tmp_path / "absent.json")
    assert settings == wl.LayoutSettings()
    assert settings.stale_threshold == timedelta(days=7)


def test_bad_values_fall_back_per_key(tmp_path):
    path = _write_config(tmp_path / "config.json", save_interval="fast",
                         stale_threshold_days=14, restore_on_connect="yes",
                         settle_delay=0, distance_threshold=-5, unknown_key=1)

    settings = wl.load_settings(path)

    assert settings.save_interval == 30.0
    assert settings.stale_threshold_days == 14
    assert settings.restore_on_connect is True
    assert settings.settle_delay == 0
    assert settings.distance_threshold == 200.0


@pytest.mark.parametrize("raw", [0.5, 0.99, float("inf"), float("nan")])
def test_fractional_or_unbounded_stale_days_fall_back(tmp_path, raw):
    path = _write_config(tmp_path / "config.json", stale_threshold_days=raw)

    settings = wl.load_settings(path)

    assert settings.stale_threshold_days == 7
    assert settings.stale_threshold == timedelta(days=7)


@pytest.mark.parametrize("raw", [float("inf"), float("nan"), -1.0])
def test_non_finite_save_interval_falls_back(tmp_path, raw):
    path = _write_config(tmp_path / "config.json", save_interval=raw)
    assert wl.load_settings(path).save_interval == 30.0


def test_sub_day_stale_threshold_keeps_unseen_windows(desk, tmp_path):
    path = _write_config(tmp_path / "config.json", stale_threshold_days=0.5,
                         storage_dir=str(tmp_path / "layouts"))
    clock = _Clock(T0)
    service = _service(desk, wl.load_settings(path), clock=clock)
    hidden = desk.add_window("com.mail", "Inbox", (0, 0, 500, 500))
    service.capture_and_save()

    desk.windows.remove(hidden)
    clock.now = T0 + timedelta(hours=1)
    config = service.capture_and_save()

    assert [w.window_title for w in config.windows] == ["Inbox"]


def test_unreadable_config_gives_defaults(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("{broken", encoding="utf-8")
    assert wl.load_settings(path) == wl.LayoutSettings()


def test_setters_validate_and_persist(desk, tmp_path, settings):
    config_path = tmp_path / "config.json"
    service = _service(desk, settings, config_path=config_path)

    service.set_save_interval(60)
    service.set_stale_threshold_days(3)
    with pytest.raises(ValueError):
        service.set_save_interval(0)
    with pytest.raises(ValueError):
        service.set_stale_threshold_days(-1)
    with pytest.raises(ValueError):
        service.set_stale_threshold_days(0.5)

    reloaded = wl.load_settings(config_path)
    assert reloaded.save_interval == 60.0
    assert reloaded.stale_threshold_days == 3
    assert reloaded.storage_dir == settings.storage_dir


# ── CLI ──────────────────────────────────────────────────────────────────
@pytest.fixture
def cli(tmp_path, desk):
    config_path = _write_config(tmp_path / "config.json",
                                storage_dir=str(tmp_path / "layouts"))

    def run(*argv, factory=None):
        return wl.main(["--config", str(config_path), *argv],
                       desktop_factory=factory or (lambda: desk))

    run.config_path = config_path
    yield run
    # main() points loguru at the captured stderr; drop that sink.
    logger.remove()


def test_cli_save_list_restore_clear(cli, desk, capsys):
    window = desk.add_window("com.a", "Doc", (10, 10, 400, 300))

    assert cli("save") == 0
    config_id = desk.current_configuration_identifier()
    assert f"Saved 1 windows -> {config_id}" in capsys.readouterr().out

    assert cli("list") == 0
    assert config_id in capsys.readouterr().out

    window.frame = Frame(500, 500, 100, 100)
    assert cli("restore") == 0
    assert "Restored 1 of 1 matched windows" in capsys.readouterr().out
    assert desk.window(window.handle).frame == Frame(10, 10, 400, 300)

    assert cli("clear", "--yes") == 0
    assert "Removed 1 saved configurations." in capsys.readouterr().out
    assert cli("list") == 0
    assert "No saved configurations." in capsys.readouterr().out


def test_cli_restore_reports_failures(cli, desk, capsys):
    window = desk.add_window("com.a", "Doc", (10, 10, 400, 300))
    cli("save")
    desk.fail_size.add(window.handle)
    capsys.readouterr()

    cli("restore")

    out = capsys.readouterr().out
    assert "Restored 0 of 1 matched windows" in out
    assert "FAILED" in out and "size: failed" in out


def test_cli_clear_can_be_cancelled(cli, desk, capsys, monkeypatch):
    desk.add_window("com.a", "Doc", (10, 10, 400, 300))
    cli("save")
    monkeypatch.setattr("builtins.input", lambda _prompt: "n")

    assert cli("clear") == 0

    assert "Cancelled." in capsys.readouterr().out
    assert cli("list") == 0
    assert desk.current_configuration_identifier() in capsys.readouterr().out


def test_cli_config_updates_file(cli, capsys):
    assert cli("config", "--save-interval", "120", "--restore-on-disconnect", "off") == 0

    out = capsys.readouterr().out
    assert f"Saved settings -> {cli.config_path}" in out
    saved = json.loads(cli.config_path.read_text(encoding="utf-8"))
    assert saved["save_interval"] == 120.0
    assert saved["restore_on_disconnect"] is False


def test_cli_config_rejects_bad_interval(cli, capsys):
    assert cli("config", "--stale-days", "0") == 2
    assert "Error:" in capsys.readouterr().err


def test_cli_without_backend_fails_cleanly(cli, capsys):
    def no_backend():
        raise RuntimeError("No desktop backend for platform 'linux'")

    assert cli("save", factory=no_backend) == 2
    assert "No desktop backend" in capsys.readouterr().err


def test_cli_help_prints_reference(cli, capsys):
    assert cli("help") == 0
    assert "Quick reference" in capsys.readouterr().out
