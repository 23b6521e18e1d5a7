"""
Result objects for OTA operations.

Provides a unified result structure that the protocol engine returns and
the CLI renders, so every front end reports outcomes the same way.
"""

from dataclasses import dataclass, field
from typing import List, Dict, Any


@dataclass
class UploadResult:
    """
    Outcome of an upload (or one phase of it).

    Attributes:
        ok: Success flag
        operation: Name of the operation (e.g., "upload_firmware", "transfer")
        target: Device address as "host:port"
        bytes_len: Number of bytes transferred
        hashes: Digest values, "md5" holds the payload digest
        message: Human-readable outcome
        warnings: Non-blocking issues encountered
        errors: Blocking errors that caused failure
        metadata: Additional operation-specific data
        logs: Captured log lines from the operation
    """
    ok: bool
    operation: str
    target: str = ""
    bytes_len: int = 0
    hashes: Dict[str, str] = field(default_factory=dict)
    message: str = ""
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    logs: List[str] = field(default_factory=list)

    @property
    def bytes_transferred(self) -> int:
        return self.bytes_len

    @property
    def digest(self) -> str:
        return self.hashes.get("md5", "")

    def add_warning(self, message: str) -> None:
        """Add a warning message."""
        self.warnings.append(message)

    def add_error(self, message: str) -> None:
        """Add an error message and mark result as failed."""
        self.errors.append(message)
        self.ok = False

    def to_summary(self) -> str:
        """
        Generate a human-readable summary string.

        Suitable for CLI output or simple logging.
        """
        status = "SUCCESS" if self.ok else "FAILED"
        lines = [f"[{status}] {self.operation}"]

        if self.target:
            lines.append(f"  Target: {self.target}")
        if self.bytes_len:
            lines.append(f"  Bytes: {self.bytes_len:,}")
        for name, value in self.hashes.items():
            lines.append(f"  {name}: {value}")
        if self.message:
            lines.append(f"  {self.message}")

        if self.warnings:
            lines.append("  Warnings:")
            for warn in self.warnings:
                lines.append(f"    - {warn}")

        if self.errors:
            lines.append("  Errors:")
            for err in self.errors:
                lines.append(f"    - {err}")

        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "ok": self.ok,
            "operation": self.operation,
            "target": self.target,
            "bytes_len": self.bytes_len,
            "hashes": self.hashes,
            "message": self.message,
            "warnings": self.warnings,
            "errors": self.errors,
            "metadata": self.metadata,
            "logs": self.logs,
        }

    @classmethod
    def success(
        cls,
        operation: str,
        target: str = "",
        bytes_len: int = 0,
        md5: str = "",
        **kwargs,
    ) -> "UploadResult":
        """Create a successful result."""
        result = cls(
            ok=True,
            operation=operation,
            target=target,
            bytes_len=bytes_len,
            **kwargs,
        )
        if md5:
            result.hashes["md5"] = md5
        return result

    @classmethod
    def failure(
        cls,
        operation: str,
        error: str,
        target: str = "",
        **kwargs,
    ) -> "UploadResult":
        """Create a failed result."""
        result = cls(
            ok=False,
            operation=operation,
            target=target,
            **kwargs,
        )
        result.errors.append(error)
        if not result.message:
            result.message = error
        return result
