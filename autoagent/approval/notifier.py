"""Fan-out of approval prompts to operator-facing channels.

Channels only push prompts. Decisions come back through
``ApprovalNotifier.submit`` (or straight through the broker / sink),
identified by approval id, so any number of channels can coexist.
"""

from __future__ import annotations

import logging
import uuid
from typing import Optional, Protocol, Union

import click

from autoagent.approval.broker import ApprovalBroker, ResolveOutcome
from autoagent.core.models import ApprovalRequest, ApprovalStatus

logger = logging.getLogger("autoagent.approval.notifier")


class ApprovalChannel(Protocol):
    name: str

    def push_approval_prompt(self, request: ApprovalRequest) -> None: ...


class LoggingChannel:
    name = "log"

    def push_approval_prompt(self, request: ApprovalRequest) -> None:
        logger.warning("APPROVAL NEEDED [%s] %s %s", request.id, request.action, request.description)


class ConsoleChannel:
    """Prints the prompt and the CLI commands that answer it."""

    name = "console"

    def __init__(self, err: bool = True):
        self.err = err

    def push_approval_prompt(self, request: ApprovalRequest) -> None:
        click.echo("", err=self.err)
        click.secho("Approval required", fg="yellow", bold=True, err=self.err)
        click.echo(f"  Action:  {request.action}", err=self.err)
        if request.description:
            click.echo(f"  Details: {request.description}", err=self.err)
        click.echo(f"  Approve: autoagent approve {request.id}", err=self.err)
        click.echo(f"  Reject:  autoagent reject {request.id}", err=self.err)


class ApprovalNotifier:
    def __init__(self, broker: ApprovalBroker, channels: Optional[list[ApprovalChannel]] = None):
        self.broker = broker
        self.channels: list[ApprovalChannel] = list(channels or [])

    def register(self, channel: ApprovalChannel) -> None:
        self.channels.append(channel)

    def notify(self, request: ApprovalRequest) -> int:
        """Push to every channel; returns how many succeeded."""
        delivered = 0
        for channel in self.channels:
            try:
                channel.push_approval_prompt(request)
                delivered += 1
            except Exception as e:
                logger.warning("Channel %s failed to push approval %s: %s",
                               getattr(channel, "name", type(channel).__name__), request.id, e)
        return delivered

    def submit(
        self,
        approval_id: uuid.UUID,
        decision: Union[ApprovalStatus, str, bool],
        resolver: str,
    ) -> ResolveOutcome:
        return self.broker.resolve(approval_id, decision, resolver)
