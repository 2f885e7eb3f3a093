from __future__ import annotations

import html
import smtplib
from datetime import date
from email.message import EmailMessage
from typing import List, Optional

from .dates import travel_days, week_number
from .geo import format_date, format_duration, format_price
from .models import FlightOffer, ReportPayload, ReportType


def render_subject(
    payload: ReportPayload,
    report_type: ReportType = ReportType.SCHEDULED,
    today: Optional[date] = None,
) -> str:
    name = payload.tracker_details.name
    if ReportType(report_type) == ReportType.PRICE_ALERT:
        price = format_price(payload.summary.cheapest_price)
        return f"✈️ {name} - Preisalarm: ab {price}"
    week = week_number(today or payload.checked_at)
    return f"{name} - Flug-Report KW {week}"


def _assessment(payload: ReportPayload) -> str:
    change = payload.summary.price_change
    if change is None:
        return "Erste Preisabfrage für diesen Tracker."
    if change < 0:
        return "Die Preise sind gesunken. Ein guter Zeitpunkt zum Buchen."
    if change > 0:
        return "Die Preise sind gestiegen. Es lohnt sich, weiter zu beobachten."
    return "Die Preise sind stabil."


def _change_line(payload: ReportPayload) -> str:
    summary = payload.summary
    if summary.price_change is None:
        return ""
    sign = "+" if summary.price_change > 0 else ""
    percent = ""
    if summary.price_change_percent is not None:
        percent = f" ({sign}{summary.price_change_percent}%)"
    return (
        f"Veränderung: {sign}{format_price(summary.price_change)}{percent} "
        f"gegenüber {format_price(summary.previous_cheapest_price)}"
    )


def _offer_line(offer: FlightOffer) -> str:
    stops = "Direkt" if offer.stops == 0 else f"{offer.stops} Stopp(s)"
    return (
        f"{offer.departure_airport} → {offer.destination_airport} | "
        f"{format_date(offer.outbound_date)} – {format_date(offer.return_date)} "
        f"({travel_days(offer.outbound_date, offer.return_date)} Tage) | "
        f"{format_price(offer.price_eur)} | {offer.airline} | {stops} | "
        f"{format_duration(offer.total_duration_min)} | {offer.booking_link}"
    )


def render_text(payload: ReportPayload, app_url: str = "") -> str:
    details = payload.tracker_details
    lines: List[str] = [
        details.name,
        f"{details.route} | {details.date_range} | {details.duration}",
        "",
        f"Günstigster Preis: {format_price(payload.summary.cheapest_price)}",
    ]
    change = _change_line(payload)
    if change:
        lines.append(change)
    lines += [
        "",
        "Empfehlung:",
        _offer_line(payload.recommendation),
    ]
    if payload.top_flights:
        lines += ["", "Weitere Optionen:"]
        lines += [_offer_line(off) for off in payload.top_flights]
    lines += ["", _assessment(payload)]
    if app_url:
        lines.append(f"Dashboard: {app_url.rstrip('/')}/trackers/{payload.tracker_id}")
    return "\n".join(lines)


def _offer_row(offer: FlightOffer) -> str:
    esc = html.escape
    link = offer.booking_link
    link_html = f'<a href="{esc(link)}">Buchen</a>' if link else ""
    stops = "Direkt" if offer.stops == 0 else str(offer.stops)
    return (
        f"<tr><td>{esc(offer.departure_airport)} → {esc(offer.destination_airport)}</td>"
        f"<td>{format_date(offer.outbound_date)} – {format_date(offer.return_date)} "
        f"({travel_days(offer.outbound_date, offer.return_date)} Tage)</td>"
        f"<td>{format_price(offer.price_eur)}</td>"
        f"<td>{esc(offer.airline)}</td><td>{stops}</td>"
        f"<td>{format_duration(offer.total_duration_min)}</td>"
        f"<td>{link_html}</td></tr>"
    )


def render_html(payload: ReportPayload, app_url: str = "") -> str:
    esc = html.escape
    details = payload.tracker_details
    parts = [
        f"<h2>{esc(details.name)}</h2>",
        f"<p>{esc(details.route)} | {esc(details.date_range)} | {esc(details.duration)}</p>",
        f"<p><strong>Günstigster Preis: "
        f"{format_price(payload.summary.cheapest_price)}</strong></p>",
    ]
    change = _change_line(payload)
    if change:
        parts.append(f"<p>{esc(change)}</p>")

    header = (
        "<thead><tr><th>Route</th><th>Datum</th><th>Preis</th><th>Airline</th>"
        "<th>Stopps</th><th>Dauer</th><th>Link</th></tr></thead>"
    )
    parts += [
        "<h3>Empfehlung</h3>",
        f"<table>{header}<tbody>{_offer_row(payload.recommendation)}</tbody></table>",
    ]
    if payload.top_flights:
        rows = "".join(_offer_row(off) for off in payload.top_flights)
        parts += [
            "<h3>Weitere Optionen</h3>",
            f"<table>{header}<tbody>{rows}</tbody></table>",
        ]
    parts.append(f"<p>{esc(_assessment(payload))}</p>")
    if app_url:
        url = f"{app_url.rstrip('/')}/trackers/{payload.tracker_id}"
        parts.append(f'<p><a href="{esc(url)}">Zum Dashboard</a></p>')
    return "<html><body>" + "\n".join(parts) + "</body></html>"


def build_message(
    payload: ReportPayload,
    to_addr: str,
    from_addr: str,
    report_type: ReportType = ReportType.SCHEDULED,
    *,
    app_url: str = "",
) -> EmailMessage:
    msg = EmailMessage()
    msg["Subject"] = render_subject(payload, report_type)
    msg["From"] = from_addr
    msg["To"] = to_addr
    msg.set_content(render_text(payload, app_url))
    msg.add_alternative(render_html(payload, app_url), subtype="html")
    return msg


def send_email(
    msg: EmailMessage,
    smtp_host: str,
    smtp_user: str,
    smtp_pass: str,
    *,
    port: int = 465,
    use_tls: bool = False,
) -> None:
    """Deliver ``msg`` through ``smtp_host``.

    Set ``use_tls`` to ``True`` for a ``STARTTLS`` connection and ``port`` to
    the appropriate port if different from the default 465.
    """
    if use_tls:
        with smtplib.SMTP(smtp_host, port) as smtp:
            smtp.starttls()
            if smtp_user:
                smtp.login(smtp_user, smtp_pass)
            smtp.send_message(msg)
    else:
        with smtplib.SMTP_SSL(smtp_host, port) as smtp:
            if smtp_user:
                smtp.login(smtp_user, smtp_pass)
            smtp.send_message(msg)


__all__ = [
    "render_subject",
    "render_text",
    "render_html",
    "build_message",
    "send_email",
]
