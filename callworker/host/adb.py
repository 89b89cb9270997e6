"""
Android host adapters over ``adb``.

Implements the capability interfaces the core consumes:

- :class:`AdbUITreeHost` - ``uiautomator dump`` for the active window,
  ``input tap`` at a node's centre for clicks
- :class:`AdbTelephonyMonitor` - polls ``dumpsys telephony.registry`` and
  reports call state changes
- :class:`AdbCallDispatcher` - places the outbound call with an
  ``android.intent.action.CALL`` intent on the selected SIM slot
"""

from __future__ import annotations

import asyncio
import re
import shlex
import xml.etree.ElementTree as ET
from typing import Awaitable, Callable, List, Optional
from urllib.parse import quote

import structlog

from callworker.core.identities import slot_for_identity
from callworker.core.models import CallPhase, WorkItem
from callworker.ui.tree import UINode

logger = structlog.get_logger(__name__)

# Bounds format in uiautomator dumps: "[left,top][right,bottom]"
BOUNDS_PATTERN = re.compile(r"\[(-?\d+),(-?\d+)\]\[(-?\d+),(-?\d+)\]")
CALL_STATE_PATTERN = re.compile(r"mCallState=(\d)")


class AdbError(RuntimeError):
    def __init__(self, message: str, *, returncode: Optional[int] = None, stderr: str = ""):
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


class AdbDevice:
    """Runs adb commands against one device without blocking the event loop."""

    def __init__(self, serial: Optional[str] = None, *, adb_path: str = "adb", timeout: float = 15.0):
        self.serial = serial
        self.adb_path = adb_path
        self.timeout = timeout

    def _base_cmd(self) -> List[str]:
        cmd = [self.adb_path]
        if self.serial:
            cmd += ["-s", self.serial]
        return cmd

    async def run(self, *args: str) -> str:
        cmd = self._base_cmd() + list(args)
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as exc:
            raise AdbError(f"adb executable not found: {self.adb_path}") from exc

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            raise AdbError(f"adb command timed out after {self.timeout}s: {' '.join(args)}")
        finally:
            # Timed out or cancelled: kill and reap the child.
            if proc.returncode is None:
                try:
                    proc.kill()
                except ProcessLookupError:
                    pass
                await proc.wait()

        out = stdout.decode("utf-8", errors="replace")
        err = stderr.decode("utf-8", errors="replace")
        if proc.returncode != 0:
            raise AdbError(
                f"adb command failed ({proc.returncode}): {' '.join(args)}",
                returncode=proc.returncode,
                stderr=err.strip(),
            )
        return out

    async def shell(self, *args: str) -> str:
        # adb concatenates shell arguments and the device shell re-parses them.
        return await self.run("shell", " ".join(shlex.quote(a) for a in args))


# ----------------------------------------------------------------------
# UI tree
# ----------------------------------------------------------------------

def _parse_bounds(raw: str):
    match = BOUNDS_PATTERN.match(raw or "")
    if not match:
        return None
    return tuple(int(v) for v in match.groups())


def _parse_node(elem: ET.Element) -> UINode:
    return UINode(
        text=elem.get("text", ""),
        description=elem.get("content-desc", ""),
        resource_id=elem.get("resource-id", ""),
        class_name=elem.get("class", ""),
        clickable=elem.get("clickable") == "true",
        enabled=elem.get("enabled", "true") == "true",
        bounds=_parse_bounds(elem.get("bounds", "")),
        children=[_parse_node(child) for child in elem if child.tag == "node"],
    )


def parse_ui_dump(xml_content: str) -> Optional[UINode]:
    """
    Parse ``uiautomator dump`` XML into a UINode tree.

    Returns None when the output holds no hierarchy. Several top-level
    windows are wrapped in one synthetic root.
    """
    xml_content = (xml_content or "").strip()
    start = xml_content.find("<hierarchy")
    if start == -1:
        logger.error("No <hierarchy> tag found in uiautomator output")
        return None
    end = xml_content.rfind("</hierarchy>")
    xml_content = xml_content[start:end + len("</hierarchy>")] if end != -1 else xml_content[start:]

    try:
        root = ET.fromstring(xml_content)
    except ET.ParseError as exc:
        logger.error("Failed to parse uiautomator XML", error=str(exc))
        return None

    nodes = [_parse_node(child) for child in root if child.tag == "node"]
    if not nodes:
        return None
    if len(nodes) == 1:
        return nodes[0]
    return UINode(class_name="hierarchy", children=nodes)


class AdbUITreeHost:
    DUMP_PATH = "/sdcard/window_dump.xml"

    def __init__(self, device: AdbDevice):
        self._device = device

    async def snapshot(self) -> Optional[UINode]:
        await self._device.shell("uiautomator", "dump", self.DUMP_PATH)
        xml_content = await self._device.shell("cat", self.DUMP_PATH)
        return parse_ui_dump(xml_content)

    async def click(self, node: UINode) -> bool:
        center = node.center
        if center is None:
            logger.warning("Node has no bounds; cannot tap", text=node.text, description=node.description)
            return False
        x, y = center
        await self._device.shell("input", "tap", str(x), str(y))
        return True


# ----------------------------------------------------------------------
# Telephony
# ----------------------------------------------------------------------

def parse_call_state(dumpsys_output: str) -> Optional[CallPhase]:
    """
    Reduce ``dumpsys telephony.registry`` to one phase.

    Multi-SIM devices print one ``mCallState`` per subscription; the most
    active one wins (offhook > ringing > idle).
    """
    states = [int(v) for v in CALL_STATE_PATTERN.findall(dumpsys_output or "")]
    if not states:
        return None
    return CallPhase.from_signal(min(max(states), 2))


class AdbTelephonyMonitor:
    def __init__(self, device: AdbDevice, *, interval: float = 1.0):
        self._device = device
        self.interval = interval

    async def read_state(self) -> Optional[CallPhase]:
        output = await self._device.shell("dumpsys", "telephony.registry")
        return parse_call_state(output)

    async def watch(self, on_state: Callable[[CallPhase], Awaitable[None]], stop: asyncio.Event) -> None:
        """Report every phase change to ``on_state`` until ``stop`` is set."""
        last: Optional[CallPhase] = None
        logger.info("Telephony monitor started", interval=self.interval)
        while not stop.is_set():
            try:
                phase = await self.read_state()
            except AdbError as exc:
                logger.warning("Failed to read call state", error=str(exc), stderr=exc.stderr)
                phase = None

            if phase is not None and phase is not last:
                last = phase
                try:
                    await on_state(phase)
                except Exception:
                    logger.exception("Call state handler failed", phase=phase.value)

            try:
                await asyncio.wait_for(stop.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass
        logger.info("Telephony monitor stopped")


# ----------------------------------------------------------------------
# Call placement
# ----------------------------------------------------------------------

def tel_uri(sequence: str) -> str:
    # '#' must be percent-encoded or the dialer truncates the sequence.
    return "tel:" + quote(sequence.strip(), safe="+*,;")


class AdbCallDispatcher:
    """Places the outbound call for a work item."""

    SLOT_EXTRAS = ("com.android.phone.extra.slot", "simSlot")

    def __init__(self, device: AdbDevice, identity_slots: Callable[[], Awaitable[List[str]]]):
        self._device = device
        self._identity_slots = identity_slots

    async def __call__(self, item: WorkItem) -> None:
        slots = await self._identity_slots()
        slot = slot_for_identity(item.origin_identity, slots)
        args = ["am", "start", "-a", "android.intent.action.CALL", "-d", tel_uri(item.target_sequence)]
        for extra in self.SLOT_EXTRAS:
            args += ["--ei", extra, str(slot)]

        output = await self._device.shell(*args)
        # am start exits 0 even when the intent cannot be resolved.
        if "Error" in output:
            raise AdbError(f"Failed to start call: {output.strip()}")
        logger.info("Outbound call started", sim_slot=slot, artifact_name=item.artifact_name)
