"""E-mail templates for leave notifications, rendered with Jinja2.

Variables missing from the data render as an empty string. A request made
of separate days lists them (``dates``); otherwise the range is shown.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Mapping

from jinja2 import Environment, Template, Undefined


class TemplateKey(str, enum.Enum):
    leave_request_notification = "leave_request_notification"
    leave_approved = "leave_approved"
    leave_rejected = "leave_rejected"
    leave_cancelled = "leave_cancelled"


@dataclass(frozen=True)
class EmailTemplate:
    subject: str
    body: str


@dataclass(frozen=True)
class RenderedEmail:
    subject: str
    body: str


_WHEN = "{% if dates %}{{ dates }}{% else %}{{ startDate }} to {{ endDate }}{% endif %}"

TEMPLATES: dict[TemplateKey, EmailTemplate] = {
    TemplateKey.leave_request_notification: EmailTemplate(
        subject="New leave request from {{ entityName }}",
        body=(
            "A new leave request needs review.\n\n"
            "Applicant: {{ entityName }} ({{ entityType }})\n"
            "Filed by: {{ requestorName }} <{{ requestorEmail }}>\n"
            "Leave type: {{ leaveType }}\n"
            f"Dates: {_WHEN} ({{{{ days }}}} day(s))\n"
            "Reason: {{ reason }}\n"
            "Submitted: {{ date }}\n"
        ),
    ),
    TemplateKey.leave_approved: EmailTemplate(
        subject="Your {{ leaveType }} request has been approved",
        body=(
            "Hello {{ entityName }},\n\n"
            f"Your {{{{ leaveType }}}} request for {_WHEN} "
            "({{ days }} day(s)) was approved by {{ adminName }} on {{ reviewDate }}.\n"
            "Notes: {{ reviewNotes }}\n"
        ),
    ),
    TemplateKey.leave_rejected: EmailTemplate(
        subject="Your {{ leaveType }} request has been rejected",
        body=(
            "Hello {{ entityName }},\n\n"
            f"Your {{{{ leaveType }}}} request for {_WHEN} "
            "({{ days }} day(s)) was rejected by {{ adminName }} on {{ reviewDate }}.\n"
            "Reason: {{ reviewNotes }}\n"
        ),
    ),
    TemplateKey.leave_cancelled: EmailTemplate(
        subject="Leave request cancelled for {{ entityName }}",
        body=(
            f"The {{{{ leaveType }}}} request of {{{{ entityName }}}} for {_WHEN} "
            "({{ days }} day(s)) was cancelled by {{ requestorName }} "
            "on {{ reviewDate }}.\n"
            "Reason: {{ reviewNotes }}\n"
        ),
    ),
}

# Plain-text mail: no HTML escaping, and the body keeps its final newline
_env = Environment(autoescape=False, keep_trailing_newline=True, undefined=Undefined)

_compiled: dict[TemplateKey, tuple[Template, Template]] = {
    key: (_env.from_string(t.subject), _env.from_string(t.body))
    for key, t in TEMPLATES.items()
}


def render(key: TemplateKey, data: Mapping[str, str]) -> RenderedEmail:
    """Render the template registered under *key* with *data*."""
    subject, body = _compiled[TemplateKey(key)]
    context = dict(data)
    return RenderedEmail(subject=subject.render(context), body=body.render(context))
