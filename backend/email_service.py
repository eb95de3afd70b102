"""
Email delivery of task lists over SMTP.
"""
import asyncio
import html
import logging
import smtplib
from email.message import EmailMessage
from typing import List, Optional

from config import SmtpConfig
from errors import EmailDeliveryError
from models import Task

logger = logging.getLogger(__name__)

DEFAULT_SUBJECT = "Your Extracted Tasks"

PRIORITY_COLORS = {
    "high": "#ef4444",
    "medium": "#f59e0b",
    "low": "#10b981",
}


def _task_lines(task: Task) -> List[str]:
    lines = [f"Priority: {task.priority.upper()}"]
    if task.due_date:
        lines.append(f"Due: {task.due_date.date().isoformat()}")
    if task.assignee:
        lines.append(f"Assignee: {task.assignee}")
    if task.description:
        lines.append(f"Description: {task.description}")
    if task.tags:
        lines.append(f"Tags: {', '.join(task.tags)}")
    return lines


def format_task_text(tasks: List[Task]) -> str:
    blocks = []
    for index, task in enumerate(tasks, start=1):
        body = "\n".join(f"   {line}" for line in _task_lines(task))
        blocks.append(f"{index}. {task.title}\n{body}")
    return "Your Extracted Tasks\n\n" + "\n\n".join(blocks)


def format_task_html(tasks: List[Task]) -> str:
    cards = []
    for index, task in enumerate(tasks, start=1):
        color = PRIORITY_COLORS.get(task.priority, PRIORITY_COLORS["low"])
        rows = [
            f'<p style="margin: 5px 0;"><strong>Priority:</strong> '
            f'<span style="color: {color};">{task.priority.upper()}</span></p>'
        ]
        if task.due_date:
            rows.append(f'<p style="margin: 5px 0;"><strong>Due:</strong> {task.due_date.date().isoformat()}</p>')
        if task.assignee:
            rows.append(f'<p style="margin: 5px 0;"><strong>Assignee:</strong> {html.escape(task.assignee)}</p>')
        if task.description:
            rows.append(
                f'<p style="margin: 5px 0;"><strong>Description:</strong> {html.escape(task.description)}</p>'
            )
        if task.tags:
            rows.append(
                f'<p style="margin: 5px 0;"><strong>Tags:</strong> {html.escape(", ".join(task.tags))}</p>'
            )
        cards.append(
            '<div style="margin-bottom: 20px; padding: 15px; background: white; border-radius: 5px;">'
            f'<h3 style="margin: 0 0 10px 0;">{index}. {html.escape(task.title)}</h3>'
            + "".join(rows)
            + "</div>"
        )

    return (
        "<h2>Your Extracted Tasks</h2>"
        "<p>Here are the tasks that were extracted from your communication:</p>"
        '<div style="font-family: monospace; background: #f5f5f5; padding: 20px; border-radius: 5px;">'
        + "".join(cards)
        + "</div>"
        "<p>You can manage these tasks in your TaskFlow dashboard.</p>"
    )


def format_task_email(tasks: List[Task], to: str, subject: str = DEFAULT_SUBJECT,
                      sender: Optional[str] = None) -> EmailMessage:
    """Build a multipart message: plain text list plus an HTML version."""
    message = EmailMessage()
    message["Subject"] = subject
    message["To"] = to
    if sender:
        message["From"] = sender
    message.set_content(format_task_text(tasks))
    message.add_alternative(format_task_html(tasks), subtype="html")
    return message


def _deliver(message: EmailMessage, config: SmtpConfig):
    with smtplib.SMTP(config.host, config.port, timeout=config.timeout_seconds) as smtp:
        smtp.starttls()
        if config.username and config.password:
            smtp.login(config.username, config.password)
        smtp.send_message(message)


async def send_task_email(to: str, tasks: List[Task], subject: str = DEFAULT_SUBJECT,
                          config: Optional[SmtpConfig] = None):
    """
    Send the task list to one recipient.

    Raises:
        EmailDeliveryError: SMTP or network failure
    """
    config = config or SmtpConfig.from_env()
    message = format_task_email(tasks, to, subject, sender=config.sender)
    try:
        # smtplib is blocking; keep it off the event loop
        await asyncio.to_thread(_deliver, message, config)
    except (smtplib.SMTPException, OSError) as e:
        logger.error(f"Email sending error: {type(e).__name__}: {e}")
        raise EmailDeliveryError("Failed to send email. Please check your email configuration.") from e
    logger.info(f"Sent {len(tasks)} task(s) to {to}")
