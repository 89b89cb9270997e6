import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from callworker.core.models import CallPhase, WorkItem
from callworker.host import adb
from callworker.host.adb import (
    AdbCallDispatcher,
    AdbDevice,
    AdbError,
    AdbTelephonyMonitor,
    AdbUITreeHost,
    parse_call_state,
    parse_ui_dump,
    tel_uri,
)
from callworker.ui.tree import UINode, find_by_text


DIALER_DUMP = """UI hierchary dumped to: /sdcard/window_dump.xml
<?xml version='1.0' encoding='UTF-8' standalone='yes' ?>
<hierarchy rotation="0">
  <node index="0" text="" resource-id="" class="android.widget.FrameLayout" content-desc="" clickable="false" enabled="true" bounds="[0,0][1080,2340]">
    <node index="0" text="Mute" resource-id="com.android.dialer:id/mute" class="android.widget.ToggleButton" content-desc="" clickable="true" enabled="true" bounds="[100,1500][300,1700]" />
    <node index="1" text="" resource-id="com.android.dialer:id/end" class="android.widget.ImageButton" content-desc="End call" clickable="true" enabled="true" bounds="[440,2000][640,2200]" />
  </node>
</hierarchy>"""


def _device(outputs=None):
    device = MagicMock()
    device.shell = AsyncMock(side_effect=outputs) if outputs is not None else AsyncMock(return_value="")
    return device


def test_parse_ui_dump_builds_tree():
    root = parse_ui_dump(DIALER_DUMP)

    assert root.class_name == "android.widget.FrameLayout"
    assert len(root.children) == 2
    mute, end = root.children
    assert mute.text == "Mute"
    assert mute.resource_id == "com.android.dialer:id/mute"
    assert mute.clickable is True
    assert mute.bounds == (100, 1500, 300, 1700)
    assert find_by_text(root, "end call") == [end]
    assert end.center == (540, 2100)


def test_parse_ui_dump_wraps_multiple_windows():
    xml = (
        '<hierarchy rotation="0">'
        '<node text="a" bounds="[0,0][1,1]" />'
        '<node text="b" bounds="[0,0][1,1]" />'
        "</hierarchy>"
    )

    root = parse_ui_dump(xml)

    assert root.class_name == "hierarchy"
    assert [child.text for child in root.children] == ["a", "b"]


@pytest.mark.parametrize("output", ["", "ERROR: null root node returned by UiTestAutomationBridge.", "<hierarchy><node"])
def test_parse_ui_dump_without_window(output):
    assert parse_ui_dump(output) is None


@pytest.mark.parametrize(
    "output, phase",
    [
        ("  mCallState=0\n  mCallIncomingNumber=\n", CallPhase.IDLE),
        ("  mCallState=1\n", CallPhase.RINGING),
        ("  mCallState=0\n  mCallState=2\n", CallPhase.CONNECTED),
        ("nothing here", None),
    ],
)
def test_parse_call_state(output, phase):
    assert parse_call_state(output) is phase


def test_tel_uri_encodes_hash():
    assert tel_uri("*123#") == "tel:*123%23"
    assert tel_uri(" +15551230001 ") == "tel:+15551230001"


@pytest.mark.asyncio
async def test_ui_host_click_taps_node_center():
    device = _device()
    host = AdbUITreeHost(device)

    assert await host.click(UINode(text="Mute", bounds=(100, 1500, 300, 1700))) is True
    device.shell.assert_awaited_once_with("input", "tap", "200", "1600")


@pytest.mark.asyncio
async def test_ui_host_click_without_bounds():
    device = _device()
    host = AdbUITreeHost(device)

    assert await host.click(UINode(text="Mute")) is False
    device.shell.assert_not_awaited()


@pytest.mark.asyncio
async def test_ui_host_snapshot_dumps_then_reads():
    device = _device(["UI hierchary dumped to: /sdcard/window_dump.xml", DIALER_DUMP])
    host = AdbUITreeHost(device)

    root = await host.snapshot()

    assert root is not None
    assert device.shell.await_args_list[0].args == ("uiautomator", "dump", AdbUITreeHost.DUMP_PATH)
    assert device.shell.await_args_list[1].args == ("cat", AdbUITreeHost.DUMP_PATH)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "origin, expected_slot",
    [("+15550000001", "0"), ("+15550000002", "1"), (None, "1")],
)
async def test_dispatcher_selects_sim_slot(origin, expected_slot):
    device = _device(["Starting: Intent { act=android.intent.action.CALL }"])

    async def slots():
        return ["+15550000001", "+15550000002"]

    dispatcher = AdbCallDispatcher(device, slots)
    await dispatcher(WorkItem("*123#", "job-1.mp3", 30, origin))

    args = device.shell.await_args.args
    assert args[:6] == ("am", "start", "-a", "android.intent.action.CALL", "-d", "tel:*123%23")
    assert args[6:] == (
        "--ei", "com.android.phone.extra.slot", expected_slot,
        "--ei", "simSlot", expected_slot,
    )


@pytest.mark.asyncio
async def test_dispatcher_raises_when_intent_fails():
    device = _device(["Error: Activity not started, unable to resolve Intent"])

    async def slots():
        return ["", ""]

    with pytest.raises(AdbError):
        await AdbCallDispatcher(device, slots)(WorkItem("+1555", "job-1.mp3"))


@pytest.mark.asyncio
async def test_monitor_reports_changes_only():
    states = ["mCallState=0", "mCallState=0", "mCallState=2", "mCallState=2", "mCallState=0"]
    stop = asyncio.Event()
    seen = []

    async def shell(*args):
        if not states:
            stop.set()
            return "mCallState=0"
        return states.pop(0)

    device = MagicMock()
    device.shell = AsyncMock(side_effect=shell)

    async def on_state(phase):
        seen.append(phase)

    await asyncio.wait_for(AdbTelephonyMonitor(device, interval=0).watch(on_state, stop), timeout=5)

    assert seen == [CallPhase.IDLE, CallPhase.CONNECTED, CallPhase.IDLE]


@pytest.mark.asyncio
async def test_monitor_survives_adb_and_handler_errors():
    outputs = [AdbError("device offline"), "mCallState=2", "mCallState=0"]
    stop = asyncio.Event()
    seen = []

    async def shell(*args):
        if not outputs:
            stop.set()
            return "mCallState=0"
        value = outputs.pop(0)
        if isinstance(value, Exception):
            raise value
        return value

    device = MagicMock()
    device.shell = AsyncMock(side_effect=shell)

    async def on_state(phase):
        seen.append(phase)
        if phase is CallPhase.CONNECTED:
            raise RuntimeError("handler bug")

    await asyncio.wait_for(AdbTelephonyMonitor(device, interval=0).watch(on_state, stop), timeout=5)

    assert seen == [CallPhase.CONNECTED, CallPhase.IDLE]


class FakeProcess:
    """Stands in for an asyncio subprocess; ``hang`` keeps communicate() pending."""

    def __init__(self, *, hang=False, stdout=b"", returncode=0):
        self.hang = hang
        self._stdout = stdout
        self._exit_code = returncode
        self.returncode = None
        self.killed = False
        self.waited = False

    async def communicate(self):
        if self.hang:
            await asyncio.Event().wait()
        self.returncode = self._exit_code
        return self._stdout, b""

    def kill(self):
        self.killed = True
        self.returncode = -9

    async def wait(self):
        self.waited = True
        return self.returncode


@pytest.fixture
def spawn(monkeypatch):
    spawned = []

    def _install(proc):
        async def fake_exec(*cmd, **kwargs):
            spawned.append(cmd)
            return proc

        monkeypatch.setattr(adb.asyncio, "create_subprocess_exec", fake_exec)
        return spawned

    return _install


@pytest.mark.asyncio
async def test_device_run_returns_stdout(spawn):
    proc = FakeProcess(stdout=b"mCallState=0\n")
    spawned = spawn(proc)

    out = await AdbDevice("emulator-5554").shell("dumpsys", "telephony.registry")

    assert out == "mCallState=0\n"
    assert spawned == [("adb", "-s", "emulator-5554", "shell", "dumpsys telephony.registry")]
    assert proc.killed is False


@pytest.mark.asyncio
async def test_device_run_kills_child_on_timeout(spawn):
    proc = FakeProcess(hang=True)
    spawn(proc)

    with pytest.raises(AdbError, match="timed out"):
        await AdbDevice(timeout=0.01).shell("uiautomator", "dump", "/sdcard/window_dump.xml")

    assert proc.killed and proc.waited


@pytest.mark.asyncio
async def test_device_run_kills_child_when_cancelled(spawn):
    proc = FakeProcess(hang=True)
    spawn(proc)

    task = asyncio.create_task(AdbDevice(timeout=30).shell("input", "tap", "540", "2100"))
    await asyncio.sleep(0.01)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert proc.killed and proc.waited


@pytest.mark.asyncio
async def test_device_run_raises_on_non_zero_exit(spawn):
    spawn(FakeProcess(returncode=1))

    with pytest.raises(AdbError) as excinfo:
        await AdbDevice().run("devices")

    assert excinfo.value.returncode == 1
