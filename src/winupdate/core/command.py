"""PowerShell command construction for the staged update script

PowerShell's ``-EncodedCommand`` takes base64 of the UTF-16LE bytes of the
command text. Encoding the whole invocation this way keeps quotes and paths
intact through SSH and cmd.exe quoting.
"""

import base64
from typing import Iterable, List

POWERSHELL = "PowerShell"

POWERSHELL_FLAGS = [
    "-ExecutionPolicy Bypass",
    "-NoProfile",
    "-NonInteractive",
    "-OutputFormat Text",
]

RESTART_COMMAND = 'shutdown.exe -f -r -t 0 -c "Packer Windows Update Restart"'

# Changes on every boot; compared before and after a restart
BOOT_TIME_SCRIPT = (
    "(Get-CimInstance Win32_OperatingSystem).LastBootUpTime"
    ".ToUniversalTime().ToString('o')"
)


def encode_utf16le(text: str) -> bytes:
    """UTF-16 little-endian code units, no BOM"""
    return text.encode("utf-16-le")


def encode_command(text: str) -> str:
    """Encode command text for ``-EncodedCommand``"""
    return base64.b64encode(encode_utf16le(text)).decode("ascii")


def decode_command(encoded: str) -> str:
    """Inverse of encode_command"""
    return base64.b64decode(encoded).decode("utf-16-le")


def quote(value: str) -> str:
    """Quote a value as a PowerShell single-quoted literal"""
    return "'" + value.replace("'", "''") + "'"


def quote_list(values: Iterable[str]) -> str:
    return ",".join(quote(v) for v in values)


def build_invocation(location: str, script_args: Iterable[str] = ()) -> str:
    """PowerShell text that runs the staged script and propagates its exit code

    Args:
        location: Path of the staged script on the target
        script_args: Pre-rendered script arguments (e.g. ``-InstallAll``)

    Returns:
        Command text, e.g. ``& 'C:/Temp/x.ps1' -InstallAll; exit $LASTEXITCODE``
    """
    parts: List[str] = ["&", quote(location)]
    parts.extend(script_args)
    return " ".join(parts) + "; exit $LASTEXITCODE"


def build_powershell_command(text: str) -> str:
    """Command line running ``text`` through PowerShell -EncodedCommand"""
    return " ".join([POWERSHELL] + POWERSHELL_FLAGS + ["-EncodedCommand", encode_command(text)])


def build_update_command(location: str, script_args: Iterable[str] = ()) -> str:
    """Full command line sent through the remote command channel"""
    return build_powershell_command(build_invocation(location, script_args))


BOOT_TIME_COMMAND = build_powershell_command(BOOT_TIME_SCRIPT)
