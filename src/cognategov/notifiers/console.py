"""Terminal notifier using rich."""

from __future__ import annotations

from rich.console import Console
from rich.markup import escape

from ..redaction import redact_mapping
from .base import ApprovalNotice

_RISK_STYLES = {
    "critical": "bold red",
    "high": "red",
    "medium": "yellow",
    "low": "green",
}


class ConsoleNotifier:
    """Prints approval notices to the terminal. Preview values are redacted."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def notify(self, notice: ApprovalNotice) -> None:
        request = notice.request
        risk = request.risk_level.value
        style = _RISK_STYLES.get(risk, "white")
        recipients = ", ".join(approver.name or approver.id for approver in notice.recipients)
        self.console.print(f"\n[bold]Approval {escape(notice.kind.value)}[/bold] [{style}]{escape(risk)}[/{style}]")
        self.console.print(f"[bold]Request ID:[/bold] {escape(request.id)}")
        self.console.print(f"[bold]Subject:[/bold] {escape(request.subject)}")
        self.console.print(f"[bold]Policy:[/bold] {escape(request.policy_id)}")
        self.console.print(f"[bold]Approvers:[/bold] {escape(recipients)}")
        if request.expires_at is not None:
            self.console.print(f"[bold]Expires:[/bold] {escape(request.expires_at.isoformat())}")
        if request.preview:
            self.console.print(f"[bold]Preview:[/bold] {escape(str(redact_mapping(request.preview)))}")
        if notice.message:
            self.console.print(escape(notice.message))
