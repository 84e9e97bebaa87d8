"""Threat inspection of tool call arguments.

Provides pattern-based detection of dangerous content in the arguments of
a tool call: destructive commands, credential access, exfiltration,
privilege escalation, code execution, system modification, and calls that
repeat verbatim (a sign of a stuck loop).

The inspector holds no state between calls. Repetition is judged only
against the ``history`` passed in, so inspecting the same call twice with
the same history yields equal results.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import re
from typing import Any, Iterable

from overseer.models import ToolCall
from overseer.permissions.base import (
    InspectionResult,
    SecurityThreat,
    ThreatCategory,
    ThreatLevel,
)

__all__ = ["ThreatInspector", "call_fingerprint"]

logger = logging.getLogger(__name__)

BASE_LEVELS: dict[ThreatCategory, ThreatLevel] = {
    ThreatCategory.MALICIOUS_COMMAND: ThreatLevel.CRITICAL,
    ThreatCategory.PRIVILEGE_ESCALATION: ThreatLevel.CRITICAL,
    ThreatCategory.SENSITIVE_FILE_ACCESS: ThreatLevel.HIGH,
    ThreatCategory.NETWORK_EXFILTRATION: ThreatLevel.HIGH,
    ThreatCategory.CODE_EXECUTION: ThreatLevel.HIGH,
    ThreatCategory.SYSTEM_MODIFICATION: ThreatLevel.HIGH,
    ThreatCategory.REPETITION: ThreatLevel.MEDIUM,
}

DESCRIPTIONS: dict[ThreatCategory, str] = {
    ThreatCategory.MALICIOUS_COMMAND: "Potentially destructive command detected",
    ThreatCategory.SENSITIVE_FILE_ACCESS: "Access to sensitive files or directories",
    ThreatCategory.NETWORK_EXFILTRATION: "Potential data exfiltration detected",
    ThreatCategory.PRIVILEGE_ESCALATION: "Privilege escalation attempt detected",
    ThreatCategory.CODE_EXECUTION: "Arbitrary code execution detected",
    ThreatCategory.SYSTEM_MODIFICATION: "System modification detected",
    ThreatCategory.REPETITION: "Repeated tool call detected, possible infinite loop",
}

RECOMMENDATIONS: dict[ThreatCategory, str] = {
    ThreatCategory.MALICIOUS_COMMAND: (
        "Carefully review this command before execution. Deny if unintentional."
    ),
    ThreatCategory.SENSITIVE_FILE_ACCESS: (
        "Verify that accessing these files is necessary and authorized."
    ),
    ThreatCategory.NETWORK_EXFILTRATION: (
        "Ensure data transmission is intentional and to a trusted destination."
    ),
    ThreatCategory.PRIVILEGE_ESCALATION: (
        "Verify that elevated privileges are necessary for this operation."
    ),
    ThreatCategory.CODE_EXECUTION: "Review the code being executed for malicious content.",
    ThreatCategory.SYSTEM_MODIFICATION: (
        "Ensure system modifications are intentional and reversible."
    ),
    ThreatCategory.REPETITION: "Check for loops or unintended repetition of the same call.",
}

# Matched text that always escalates a threat to CRITICAL
_ESCALATION = re.compile(r"rm\s+-\w*r|\bformat\b|/dev/zero|\bmkfs", re.IGNORECASE)

# Tool names containing any of these are treated as file operations
_FILE_TOOL_MARKERS = ("file", "read", "write", "delete", "path", "dir")


def call_fingerprint(tool_name: str, arguments: dict[str, Any]) -> str:
    """Return a stable fingerprint of a tool name and its arguments.

    Arguments are rendered as canonical JSON (sorted keys) so that
    key order does not affect the result.
    """
    canonical = json.dumps(arguments, sort_keys=True, default=str, separators=(",", ":"))
    digest = hashlib.sha256(f"{tool_name}\x00{canonical}".encode()).hexdigest()
    return digest[:32]


def _string_values(value: Any) -> list[str]:
    """Collect every string leaf of an argument payload, keys included."""
    if isinstance(value, str):
        return [value]
    if isinstance(value, dict):
        found: list[str] = []
        for key, item in value.items():
            found.append(str(key))
            found.extend(_string_values(item))
        return found
    if isinstance(value, (list, tuple, set)):
        found = []
        for item in value:
            found.extend(_string_values(item))
        return found
    if value is None:
        return []
    return [str(value)]


class ThreatInspector:
    """Scans tool call arguments for dangerous patterns.

    Each category has its own list of compiled, case-insensitive patterns.
    File-oriented tools (name contains file, read, write, delete, path or
    dir) are additionally checked for access to system and credential
    paths.

    Attributes:
        repetition_threshold: How many identical earlier calls in the
            history make a call count as repeated

    Example:
        >>> inspector = ThreatInspector()
        >>> call = ToolCall(id="1", name="run_shell", arguments={"command": "sudo rm -rf /"})
        >>> result = inspector.inspect(call)
        >>> result.is_safe
        False
        >>> result.level
        <ThreatLevel.CRITICAL: 4>
    """

    def __init__(self, repetition_threshold: int = 2) -> None:
        if repetition_threshold < 1:
            raise ValueError("repetition_threshold must be at least 1")
        self.repetition_threshold = repetition_threshold
        self._patterns: dict[ThreatCategory, list[re.Pattern[str]]] = {
            ThreatCategory.MALICIOUS_COMMAND: self._compile_malicious_patterns(),
            ThreatCategory.SENSITIVE_FILE_ACCESS: self._compile_sensitive_file_patterns(),
            ThreatCategory.NETWORK_EXFILTRATION: self._compile_network_patterns(),
            ThreatCategory.PRIVILEGE_ESCALATION: self._compile_privilege_patterns(),
            ThreatCategory.CODE_EXECUTION: self._compile_code_execution_patterns(),
            ThreatCategory.SYSTEM_MODIFICATION: self._compile_system_patterns(),
        }
        self._sensitive_paths = self._sensitive_path_prefixes()

    def inspect(
        self,
        tool_call: ToolCall,
        tool_name: str | None = None,
        *,
        history: Iterable[ToolCall] = (),
    ) -> InspectionResult:
        """Inspect a tool call and report every threat found.

        Args:
            tool_call: The call to inspect
            tool_name: Tool identity to inspect under; defaults to the call's name
            history: Earlier tool calls of the session, oldest first

        Returns:
            InspectionResult listing threats in detection order
        """
        name = tool_name or tool_call.name
        values = _string_values(tool_call.arguments)
        threats: list[SecurityThreat] = []
        seen: set[tuple[ThreatCategory, str]] = set()

        def add(threat: SecurityThreat) -> None:
            key = (threat.category, threat.pattern or "")
            if key not in seen:
                seen.add(key)
                threats.append(threat)

        repetition = self._detect_repetition(name, tool_call.arguments, history)
        if repetition is not None:
            add(repetition)

        for threat in self._detect_patterns(name, values):
            add(threat)

        if self._is_file_operation(name):
            for threat in self._detect_sensitive_paths(values):
                add(threat)

        if not threats:
            return InspectionResult.safe()

        result = InspectionResult.unsafe(threats)
        logger.warning(
            f"Inspection of tool '{name}' found {len(threats)} threat(s) "
            f"(max level: {result.level})"
        )
        for threat in threats:
            logger.debug(f"  - {threat.category} ({threat.level}): {threat.description}")
        return result

    def _detect_repetition(
        self,
        tool_name: str,
        arguments: dict[str, Any],
        history: Iterable[ToolCall],
    ) -> SecurityThreat | None:
        signature = call_fingerprint(tool_name, arguments)
        repeats = sum(
            1
            for earlier in history
            if earlier.name == tool_name
            and call_fingerprint(earlier.name, earlier.arguments) == signature
        )
        if repeats < self.repetition_threshold:
            return None
        return SecurityThreat(
            category=ThreatCategory.REPETITION,
            level=BASE_LEVELS[ThreatCategory.REPETITION],
            description=f"{DESCRIPTIONS[ThreatCategory.REPETITION]} ({repeats} earlier)",
            pattern=tool_name,
            recommendation=RECOMMENDATIONS[ThreatCategory.REPETITION],
        )

    def _detect_patterns(self, tool_name: str, values: list[str]) -> list[SecurityThreat]:
        threats: list[SecurityThreat] = []
        for category, patterns in self._patterns.items():
            for pattern in patterns:
                for value in values:
                    match = pattern.search(value)
                    if match is None:
                        continue
                    level = BASE_LEVELS[category]
                    if _ESCALATION.search(match.group(0)):
                        level = ThreatLevel.CRITICAL
                    threats.append(
                        SecurityThreat(
                            category=category,
                            level=level,
                            description=f"{DESCRIPTIONS[category]}: {match.group(0).strip()}",
                            pattern=pattern.pattern,
                            recommendation=RECOMMENDATIONS[category],
                        )
                    )
                    logger.debug(
                        f"Detected {category} in tool '{tool_name}' "
                        f"matching pattern '{pattern.pattern}'"
                    )
                    break
        return threats

    def _detect_sensitive_paths(self, values: list[str]) -> list[SecurityThreat]:
        threats: list[SecurityThreat] = []
        for value in values:
            normalized = value.strip().lower().replace("\\", "/")
            for prefix in self._sensitive_paths:
                if normalized.startswith(prefix) or normalized == prefix.rstrip("/"):
                    threats.append(
                        SecurityThreat(
                            category=ThreatCategory.SENSITIVE_FILE_ACCESS,
                            level=ThreatLevel.HIGH,
                            description=f"Access to sensitive system path: {prefix}",
                            pattern=prefix,
                            recommendation="Ensure this access is authorized and necessary.",
                        )
                    )
                    break
        return threats

    @staticmethod
    def _is_file_operation(tool_name: str) -> bool:
        lowered = tool_name.lower()
        return any(marker in lowered for marker in _FILE_TOOL_MARKERS)

    @staticmethod
    def _sensitive_path_prefixes() -> list[str]:
        prefixes = [
            "/etc/",
            "/sys/",
            "/proc/",
            "/dev/",
            "/boot/",
            "/var/log/",
            "/usr/bin/",
            "/usr/sbin/",
            "/bin/",
            "/sbin/",
            "/system/",
            "/library/",
            "c:/windows/",
            "c:/program files/",
            "%systemroot%",
            "%windir%",
            "%programfiles%",
        ]
        home = os.path.expanduser("~").lower().replace("\\", "/").rstrip("/")
        for secret_dir in (".ssh/", ".gnupg/", ".aws/", ".azure/"):
            prefixes.append(f"~/{secret_dir}")
            if home and home != "~":
                prefixes.append(f"{home}/{secret_dir}")
        return prefixes

    def _compile_malicious_patterns(self) -> list[re.Pattern[str]]:
        """Compile patterns for destructive commands.

        Returns:
            List of compiled patterns
        """
        patterns = [
            r"\brm\s+(-\w+\s+)*-\w*r\w*\s+(/|~)(\*|\s|$)",  # rm -rf / or ~
            r"\bformat\s+[a-z]:",  # format c:
            r"\bdel\s+/[fsq]\s+/[fsq]",  # del /f /s /q
            r"\bdd\s+if=/dev/(zero|random|urandom)",  # disk overwrite
            r"\bmkfs(\.\w+)?\b",  # format filesystem
            r":\(\)\s*\{\s*:\s*\|\s*:\s*&\s*\}\s*;\s*:",  # fork bomb
            r"\bchmod\s+-R\s+777\s+/(\s|$)",  # world-writable root
            r"\bchown\s+-R\s+\S+\s+/(\s|$)",  # recursive chown of root
            r">\s*/dev/sd[a-z]",  # write to disk devices
            r"\b(wget|curl)\b.*\|\s*(ba|z)?sh\b",  # download-and-execute
        ]
        return [re.compile(p, re.IGNORECASE) for p in patterns]

    def _compile_sensitive_file_patterns(self) -> list[re.Pattern[str]]:
        """Compile patterns for credential and account files.

        Returns:
            List of compiled patterns
        """
        patterns = [
            r"/etc/(passwd|shadow|sudoers|gshadow)\b",  # account databases
            r"(~|/home/[^/\s]+|/root|/users/[^/\s]+)/\.ssh/",  # ssh keys
            r"\.aws/credentials",  # aws credentials
            r"\.config/gcloud/",  # gcloud credentials
            r"\bid_(rsa|dsa|ecdsa|ed25519)\b",  # private key files
            r"\.(pem|p12|pfx)\b",  # certificate bundles
            r"\bprivate[_\-\s]?key\b",  # private keys
            r"c:\\windows\\system32\\",  # windows system directory
            r"c:\\users\\[^\\]+\\ntuser",  # windows registry hive
        ]
        return [re.compile(p, re.IGNORECASE) for p in patterns]

    def _compile_network_patterns(self) -> list[re.Pattern[str]]:
        """Compile patterns for data leaving the machine.

        Returns:
            List of compiled patterns
        """
        patterns = [
            r"\b(curl|wget)\b.*\bhttps?://",  # http transfer
            r"\b(nc|ncat|netcat)\b.*\s-e\s",  # netcat shell
            r"\|\s*(nc|ncat|netcat)\s",  # pipe to netcat
            r"\bbase64\b.*\|.*\b(curl|wget|nc)\b",  # encoded upload
            r"\btar\b.*\|.*\bssh\b",  # archive over ssh
            r"\bscp\s",  # secure copy
            r"\brsync\b.*\bssh\b",  # rsync over ssh
            r"\bs?ftp\s",  # ftp transfer
            r"\b(python|perl|ruby)\b.*\bsocket\b",  # raw sockets
        ]
        return [re.compile(p, re.IGNORECASE) for p in patterns]

    def _compile_privilege_patterns(self) -> list[re.Pattern[str]]:
        """Compile patterns for privilege escalation.

        Returns:
            List of compiled patterns
        """
        patterns = [
            r"(^|[;&|`(]\s*|\s)sudo\s",  # sudo
            r"(^|[;&|`(]\s*|\s)su\s+-",  # su -
            r"\b(doas|pkexec|gsudo|runas)\b",  # sudo alternatives
            r"\bchmod\s+[2467][0-7]{3}\b",  # setuid/setgid octal
            r"\bchmod\s+\S*[ug]\+s\b",  # setuid/setgid symbolic
            r"\bvisudo\b",  # sudoers editor
            r"\busermod\b.*\b(root|sudo|wheel)\b",  # add user to admin group
            r"\bset[ug]id\s*\(",  # setuid() calls
        ]
        return [re.compile(p, re.IGNORECASE) for p in patterns]

    def _compile_code_execution_patterns(self) -> list[re.Pattern[str]]:
        """Compile patterns for arbitrary code execution.

        Returns:
            List of compiled patterns
        """
        patterns = [
            r"\b(eval|exec|compile)\s*\(",  # dynamic evaluation
            r"__import__",  # dynamic import
            r"\bimportlib\b",  # dynamic import
            r"\b(pickle|marshal)\.loads?\b",  # unsafe deserialization
            r"\bos\.(system|popen)\b",  # shell from python
            r"\bsubprocess\.(call|run|popen|check_output)\b",  # subprocess
            r"\b(system|popen|shell_exec|passthru)\s*\(",  # shell from php/c
            r"\bruntime\.getruntime\b",  # java exec
            r"\bprocessbuilder\b",  # java exec
            r"\b(javascript|vbscript):",  # script urls
            r"data:text/html",  # html data urls
        ]
        return [re.compile(p, re.IGNORECASE) for p in patterns]

    def _compile_system_patterns(self) -> list[re.Pattern[str]]:
        """Compile patterns for system configuration changes.

        Returns:
            List of compiled patterns
        """
        patterns = [
            r"/etc/(hosts|resolv\.conf|crontab|fstab)\b",  # system config files
            r"\bcrontab\s+-[er]\b",  # crontab edits
            r"\breg(edit|\s+add|\s+delete)\b",  # windows registry
            r"\bbcdedit\b",  # windows boot config
            r"\bdiskpart\b",  # windows partitions
            r"\b(fdisk|parted)\b",  # partitions
            r"\bsystemctl\s+(disable|mask|stop)\b",  # services
            r"\bchkconfig\b",  # services
            r"\blaunchctl\b",  # macos services
            r"/library/(launchdaemons|startupitems)",  # macos startup items
        ]
        return [re.compile(p, re.IGNORECASE) for p in patterns]
