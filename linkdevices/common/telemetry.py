"""
Local device facts stored as the value of a freshly registered Device link.

Everything comes from the standard library so collection works on any host;
a failing probe fails the whole snapshot rather than leaving holes in it.
"""
import locale
import platform
import sys
import uuid
from datetime import datetime, timezone

from .errors import TelemetryFailure


def mac_address() -> str:
    node = uuid.getnode()
    return ":".join(f"{(node >> shift) & 0xff:02x}" for shift in range(40, -8, -8))


def language_code() -> str | None:
    lang, _ = locale.getlocale()
    return lang.split("_")[0] if lang else None


def collect_device_info() -> dict:
    """
    Snapshot of the local device.

    Returns dict with keys:
        - device_name: hostname
        - os_type / os_version: lowercase system name and release
        - platform: full platform string
        - machine_info: machine, processor, python version
        - language_code: ISO language from the current locale, or None
        - mac_address: primary interface MAC as reported by uuid.getnode()
        - collected_at: UTC timestamp of the snapshot
    """
    try:
        return {
            "device_name": platform.node(),
            "os_type": platform.system().lower(),
            "os_version": platform.release(),
            "platform": platform.platform(),
            "machine_info": {
                "machine": platform.machine(),
                "processor": platform.processor(),
                "python_version": sys.version.split()[0],
                "implementation": platform.python_implementation(),
            },
            "language_code": language_code(),
            "mac_address": mac_address(),
            "collected_at": datetime.now(timezone.utc).isoformat(timespec="seconds"),
        }
    except (OSError, ValueError) as e:
        raise TelemetryFailure(f"device info collection failed: {e}") from e
