"""
Session attachments and suspend/resume recovery.

Every live session's ConnectionMeta is written to its handle as an attachment
at connect time and after every meta mutation. When the host resumes a
suspended process the in-memory registry is gone; restore_sessions rebuilds it
from the attachments of the handles the host still holds open.
"""

from dataclasses import dataclass, field

from pydantic import ValidationError

from ..exceptions import AttachmentError, ErrorContext, SessionRestoreError
from ..structured_logging.enhanced_logging_config import get_logger
from .handle import ConnectionHandle, SessionHost
from .meta import ConnectionMeta
from .session_registry import Session, SessionRegistry

logger = get_logger(__name__)


def store_attachment(handle: ConnectionHandle, meta: ConnectionMeta) -> None:
    """Persist meta on the handle so it survives a suspend/resume cycle."""
    handle.serialize_attachment(meta.to_attachment())


def load_attachment(handle: ConnectionHandle, meta_model: type[ConnectionMeta] = ConnectionMeta) -> ConnectionMeta:
    """
    Read and validate the attachment stored on a handle.

    Raises:
        AttachmentError: If the attachment is missing, unreadable or fails validation
    """
    context = ErrorContext(handle_id=handle.handle_id)
    try:
        raw = handle.deserialize_attachment()
    except Exception as e:  # pylint: disable=broad-exception-caught  # Reason: host storage failures vary by host; all mean the attachment is unusable
        raise AttachmentError(f"Attachment could not be read: {e}", context) from e

    if raw is None:
        raise AttachmentError("Handle has no attachment", context)

    try:
        return meta_model.model_validate(raw)
    except ValidationError as e:
        raise AttachmentError(
            "Attachment failed validation", context, details={"errors": e.errors(include_url=False)}
        ) from e


@dataclass
class RestoreReport:
    """Outcome of one restore pass."""

    restored: list[Session] = field(default_factory=list)
    failures: list[tuple[str, Exception]] = field(default_factory=list)

    @property
    def restored_count(self) -> int:
        return len(self.restored)

    @property
    def failed_count(self) -> int:
        return len(self.failures)

    def error(self) -> SessionRestoreError | None:
        """Aggregate error describing every failed handle, or None if all succeeded."""
        if not self.failures:
            return None
        return SessionRestoreError(
            f"{len(self.failures)} session(s) could not be restored",
            failures=list(self.failures),
        )


def restore_sessions(
    host: SessionHost,
    registry: SessionRegistry,
    meta_model: type[ConnectionMeta] = ConnectionMeta,
) -> RestoreReport:
    """
    Rebuild the registry from the attachments of the host's open handles.

    The registry is cleared first. A handle whose attachment is missing or
    corrupt is recorded in the report and skipped; it never prevents the other
    handles from being restored.
    """
    registry.clear()
    report = RestoreReport()

    for handle in host.get_open_handles():
        try:
            meta = load_attachment(handle, meta_model)
        except AttachmentError as e:
            logger.warning("Failed to restore session", handle_id=handle.handle_id, error=e.message)
            report.failures.append((handle.handle_id, e))
            continue
        report.restored.append(registry.register(handle, meta))

    logger.info(
        "Sessions restored",
        room=registry.name,
        restored=report.restored_count,
        failed=report.failed_count,
    )
    return report
