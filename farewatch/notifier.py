from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

from telegram import Bot

from .config import Settings, get_settings
from .geo import format_price
from .mailer import build_message, render_subject, render_text, send_email
from .models import ReportPayload, ReportType

logger = logging.getLogger(__name__)


class Notifier(ABC):
    """One-way delivery of a :class:`ReportPayload`.

    :meth:`notify` hands the payload to the channel and returns whether it
    went out; delivery errors are logged, never raised to the caller.
    """

    name = "notifier"

    def notify(
        self,
        payload: ReportPayload,
        address: Optional[str],
        report_type: ReportType = ReportType.SCHEDULED,
    ) -> bool:
        try:
            self._deliver(payload, address, ReportType(report_type))
        except Exception:
            logger.exception(
                "%s delivery failed for tracker %s", self.name, payload.tracker_id
            )
            return False
        return True

    @abstractmethod
    def _deliver(
        self, payload: ReportPayload, address: Optional[str], report_type: ReportType
    ) -> None:
        """Send *payload*; may raise."""


class LogNotifier(Notifier):
    """Writes the rendered report to the log; used when no channel is set up."""

    name = "log"

    def _deliver(self, payload, address, report_type):
        logger.info(
            "%s for %s:\n%s",
            render_subject(payload, report_type),
            address or "-",
            render_text(payload),
        )


class EmailNotifier(Notifier):
    name = "email"

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    def _deliver(self, payload, address, report_type):
        if not address:
            logger.info("No e-mail address for tracker %s", payload.tracker_id)
            return
        s = self.settings
        msg = build_message(
            payload, address, s.email_from, report_type, app_url=s.app_url
        )
        send_email(
            msg,
            s.smtp_host,
            s.smtp_user,
            s.smtp_pass,
            port=s.smtp_port,
            use_tls=s.smtp_use_tls,
        )
        logger.info("E-mail sent to %s for tracker %s", address, payload.tracker_id)


class TelegramNotifier(Notifier):
    """Short push message to one configured chat; *address* is ignored."""

    name = "telegram"

    def __init__(self, token: str, chat_id: str) -> None:
        self.token = token
        self.chat_id = chat_id

    def format_message(self, payload: ReportPayload, report_type: ReportType) -> str:
        rec = payload.recommendation
        summary = payload.summary
        lines = [
            render_subject(payload, report_type),
            payload.tracker_details.route,
            f"{rec.outbound_date} – {rec.return_date}",
            f"{format_price(rec.price_eur)} mit {rec.airline}",
        ]
        if summary.price_change_percent is not None:
            lines.append(f"{summary.price_change_percent}% vs. letzte Abfrage")
        if rec.booking_link:
            lines.append(rec.booking_link)
        return "\n".join(lines)

    async def _send(self, text: str) -> None:
        async with Bot(token=self.token) as bot:
            await bot.send_message(chat_id=self.chat_id, text=text)

    def _deliver(self, payload, address, report_type):
        asyncio.run(self._send(self.format_message(payload, report_type)))


class MultiNotifier(Notifier):
    name = "multi"

    def __init__(self, notifiers: Sequence[Notifier]) -> None:
        self.notifiers = list(notifiers)

    def notify(self, payload, address, report_type=ReportType.SCHEDULED) -> bool:
        results = [n.notify(payload, address, report_type) for n in self.notifiers]
        return any(results)

    def _deliver(self, payload, address, report_type):
        for n in self.notifiers:
            n.notify(payload, address, report_type)


def build_notifier(settings: Optional[Settings] = None) -> Notifier:
    """E-mail when SMTP is configured, otherwise the log; plus Telegram if set."""
    settings = settings or get_settings()
    channels: List[Notifier] = [
        EmailNotifier(settings) if settings.smtp_configured else LogNotifier()
    ]
    if settings.telegram_configured:
        channels.append(
            TelegramNotifier(settings.telegram_token, settings.telegram_chat_id)
        )
    if len(channels) == 1:
        return channels[0]
    return MultiNotifier(channels)


__all__ = [
    "Notifier",
    "LogNotifier",
    "EmailNotifier",
    "TelegramNotifier",
    "MultiNotifier",
    "build_notifier",
]
