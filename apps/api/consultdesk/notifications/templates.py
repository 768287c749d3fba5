from __future__ import annotations

import html
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from jinja2 import DictLoader, Environment, StrictUndefined, select_autoescape

STATUS_MESSAGES = {
    "contacted": "Our team has reached out to you regarding your request.",
    "in-progress": "Your consultation is now in progress. Our team is working on your requirements.",
    "completed": "Your consultation has been completed. Thank you for choosing {brand}.",
    "cancelled": "Your consultation request has been cancelled as per your request.",
}
DEFAULT_STATUS_MESSAGE = "Your request status has been updated."
WHATSAPP_MESSAGE_PREVIEW = 100

_LAYOUT = """<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>{{ brand }}</title>
  <style>
    body { font-family: Arial, Helvetica, sans-serif; line-height: 1.6; color: #333; margin: 0; padding: 0; background-color: #f4f4f4; }
    .email-wrapper { max-width: 600px; margin: 0 auto; background-color: #ffffff; }
    .header { background-color: #00356B; color: #ffffff; padding: 30px; text-align: center; }
    .header h1 { margin: 0; font-family: Georgia, serif; font-size: 28px; }
    .content { padding: 40px 30px; }
    .content h2 { color: #00356B; font-family: Georgia, serif; font-size: 24px; margin: 0 0 20px; }
    .info-box { background-color: #f9f9f9; border-left: 4px solid #00356B; padding: 20px; margin: 25px 0; }
    .info-box strong { color: #00356B; display: inline-block; min-width: 120px; }
    .footer { background-color: #00356B; color: #ffffff; padding: 30px; text-align: center; font-size: 13px; }
  </style>
</head>
<body>
  <div class="email-wrapper">
    <div class="header"><h1>{{ brand }}</h1></div>
    <div class="content">
{% block content %}{% endblock %}
    </div>
    <div class="footer">
      <p><strong>{{ brand }}</strong></p>
      <p>Management Consulting</p>
      <p>&copy; {{ year }} {{ brand }}. All rights reserved.</p>
    </div>
  </div>
</body>
</html>
"""

_NEW_CONSULTATION_ADMIN = """{% extends "layout.html" %}
{% block content %}
<h2>New Consultation Request</h2>
<p>A new consultation request has been submitted through the {{ brand }} website.</p>
<div class="info-box">
  <p><strong>Name:</strong> {{ c.name }}</p>
  <p><strong>Email:</strong> {{ c.email }}</p>
  <p><strong>Phone:</strong> {{ c.phone }}</p>
  <p><strong>Organization:</strong> {{ c.organization or "Not specified" }}</p>
  <p><strong>Service:</strong> {{ service_label }}</p>
  <p><strong>Request ID:</strong> {{ c.consultation_id }}</p>
  <p><strong>Date:</strong> {{ submitted_at }}</p>
</div>
<p><strong>Message:</strong></p>
<div class="info-box"><p>{{ c.message }}</p></div>
<p>Please review and respond to this request within 24 hours.</p>
{% endblock %}
"""

_NEW_CONSULTATION_CLIENT = """{% extends "layout.html" %}
{% block content %}
<h2>Thank You for Contacting {{ brand }}</h2>
<p>Dear {{ c.name }},</p>
<p>We have received your consultation request and truly appreciate your interest in working with {{ brand }}.</p>
<div class="info-box">
  <p><strong>Service Requested:</strong> {{ service_label }}</p>
  <p><strong>Request ID:</strong> {{ c.consultation_id }}</p>
  <p><strong>Status:</strong> Pending Review</p>
</div>
<p>Our team will review your requirements and reach out to you within <strong>24 hours</strong>.</p>
<p>Best regards,<br><strong>The {{ brand }} Team</strong></p>
{% endblock %}
"""

_STATUS_UPDATE = """{% extends "layout.html" %}
{% block content %}
<h2>Consultation Request Update</h2>
<p>Dear {{ c.name }},</p>
<p>We wanted to update you on the status of your consultation request.</p>
<div class="info-box">
  <p><strong>Request ID:</strong> {{ c.consultation_id }}</p>
  <p><strong>Service:</strong> {{ service_label }}</p>
  <p><strong>New Status:</strong> {{ status_label }}</p>
  <p><strong>Updated:</strong> {{ updated_at }}</p>
</div>
<p>{{ status_message }}</p>
<p>If you have any questions, please don't hesitate to contact us.</p>
<p>Best regards,<br><strong>The {{ brand }} Team</strong></p>
{% endblock %}
"""

_NEW_CONSULTATION_WHATSAPP = """NEW CONSULTATION REQUEST
Name: {{ c.name }}
Service: {{ c.service }}
Email: {{ c.email }}
Phone: {{ c.phone }}
Organization: {{ c.organization or "N/A" }}
Message: {{ message_preview }}
Request ID: {{ c.consultation_id }}"""

_environment = Environment(
    loader=DictLoader(
        {
            "layout.html": _LAYOUT,
            "new_consultation_admin.html": _NEW_CONSULTATION_ADMIN,
            "new_consultation_client.html": _NEW_CONSULTATION_CLIENT,
            "status_update.html": _STATUS_UPDATE,
            "new_consultation_whatsapp.txt": _NEW_CONSULTATION_WHATSAPP,
        }
    ),
    autoescape=select_autoescape(enabled_extensions=("html",)),
    undefined=StrictUndefined,
    trim_blocks=True,
    lstrip_blocks=True,
)

_TAG_RE = re.compile(r"<[^>]*>")
_STYLE_RE = re.compile(r"<(style|head)[^>]*>.*?</\1>", re.DOTALL | re.IGNORECASE)
_BLANK_LINES_RE = re.compile(r"\n\s*\n+")


@dataclass(frozen=True, slots=True)
class RenderedMessage:
    subject: str
    html: str
    text: str


def service_label(service: str) -> str:
    return service[:1].upper() + service[1:]


def status_label(status: str) -> str:
    return service_label(status).replace("-", " ", 1)


def status_message(status: str, brand: str) -> str:
    return STATUS_MESSAGES.get(status, DEFAULT_STATUS_MESSAGE).format(brand=brand)


def html_to_text(markup: str) -> str:
    without_head = _STYLE_RE.sub("", markup)
    text = html.unescape(_TAG_RE.sub("", without_head))
    lines = [line.strip() for line in text.splitlines()]
    return _BLANK_LINES_RE.sub("\n\n", "\n".join(lines)).strip()


def _render_html(template_name: str, subject: str, **context: Any) -> RenderedMessage:
    markup = _environment.get_template(template_name).render(**context)
    return RenderedMessage(subject=subject, html=markup, text=html_to_text(markup))


def render_new_consultation_admin(consultation: dict[str, Any], *, brand: str, now: datetime) -> RenderedMessage:
    return _render_html(
        "new_consultation_admin.html",
        f"New Consultation Request - {consultation['service']}",
        c=consultation,
        brand=brand,
        year=now.year,
        service_label=service_label(consultation["service"]),
        submitted_at=consultation.get("created_at") or now.isoformat(),
    )


def render_new_consultation_client(consultation: dict[str, Any], *, brand: str, now: datetime) -> RenderedMessage:
    return _render_html(
        "new_consultation_client.html",
        f"Consultation Request Received - {brand}",
        c=consultation,
        brand=brand,
        year=now.year,
        service_label=service_label(consultation["service"]),
    )


def render_status_update(consultation: dict[str, Any], *, brand: str, now: datetime) -> RenderedMessage:
    status = consultation["status"]
    return _render_html(
        "status_update.html",
        f"Consultation Update - {status.replace('-', ' ', 1)}",
        c=consultation,
        brand=brand,
        year=now.year,
        service_label=service_label(consultation["service"]),
        status_label=status_label(status),
        status_message=status_message(status, brand),
        updated_at=now.strftime("%Y-%m-%d %H:%M UTC"),
    )


def render_new_consultation_whatsapp(consultation: dict[str, Any]) -> str:
    message = consultation["message"]
    preview = message[:WHATSAPP_MESSAGE_PREVIEW] + ("..." if len(message) > WHATSAPP_MESSAGE_PREVIEW else "")
    return _environment.get_template("new_consultation_whatsapp.txt").render(c=consultation, message_preview=preview)
