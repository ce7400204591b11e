"""
Transactional e-mail through the Gmail API.

Messages are built with ``email.message.EmailMessage`` and posted raw
(base64url) to ``users/me/messages/send``. Every send either returns or
raises ``EmailError``; callers decide whether a failure matters.
"""

import base64
import logging
from dataclasses import dataclass
from datetime import datetime
from email.message import EmailMessage
from typing import Iterable, Optional
import httpx
from config import EMAIL_SENDER, EMAIL_TIMEOUT
from services.google_auth import GoogleAuthError, get_access_token

logger = logging.getLogger(__name__)

_SEND_URL = "https://gmail.googleapis.com/gmail/v1/users/me/messages/send"


class EmailError(RuntimeError):
    pass


@dataclass
class Attachment:
    filename: str
    content_type: str
    content: bytes


class Mailer:
    def send(self, to: str, subject: str, body: str, cc: Iterable[str] = (),
             attachment: Optional[Attachment] = None) -> None:
        raise NotImplementedError


def build_message(sender: str, to: str, subject: str, body: str, cc: Iterable[str] = (),
                  attachment: Optional[Attachment] = None) -> EmailMessage:
    msg = EmailMessage()
    msg["From"] = sender
    msg["To"] = to
    cc = [c for c in cc if c]
    if cc:
        msg["Cc"] = ", ".join(cc)
    msg["Subject"] = subject
    msg.set_content("Este e-mail requer um cliente com suporte a HTML.")
    msg.add_alternative(body, subtype="html")
    if attachment is not None:
        maintype, _, subtype = attachment.content_type.partition("/")
        msg.add_attachment(attachment.content, maintype=maintype,
                           subtype=subtype or "octet-stream", filename=attachment.filename)
    return msg


class GmailMailer(Mailer):
    def __init__(self, sender: str = EMAIL_SENDER, timeout: float = EMAIL_TIMEOUT):
        self.sender = sender
        self.timeout = timeout

    def send(self, to, subject, body, cc=(), attachment=None) -> None:
        msg = build_message(self.sender, to, subject, body, cc, attachment)
        raw = base64.urlsafe_b64encode(msg.as_bytes()).decode("ascii")
        try:
            with httpx.Client(timeout=self.timeout) as client:
                headers = {"Authorization": f"Bearer {get_access_token(client)}"}
                resp = client.post(_SEND_URL, headers=headers, json={"raw": raw})
                resp.raise_for_status()
        except httpx.TimeoutException as e:
            raise EmailError(f"Tempo esgotado ao enviar e-mail para {to}") from e
        except (httpx.HTTPError, GoogleAuthError) as e:
            raise EmailError(f"Falha ao enviar e-mail para {to}: {e}") from e
        logger.info(f"E-mail enviado para {to} (cc={list(cc)}): {subject}")


_mailer: Mailer = GmailMailer()


def get_mailer() -> Mailer:
    return _mailer


def _fmt_date(value: datetime) -> str:
    return value.strftime("%d/%m/%Y")


def parse_cc_list(raw: Optional[str]) -> list[str]:
    return [e.strip() for e in (raw or "").split(",") if e.strip()]


# ── Templates ─────────────────────────────────────────────────────────────────

def send_attestation_request(mailer: Mailer, *, note, link: str, requester_email: str,
                             cc_emails: Iterable[str] = (),
                             attachment: Optional[Attachment] = None) -> None:
    cc = list(dict.fromkeys([requester_email, *cc_emails]))
    subject = f"Solicitação de atesto: {note.description}"
    body = (
        f"<p>Prezado(a) {note.coordinator_name},</p>"
        f"<p>{note.requester} solicita o atesto da nota fiscal "
        f"{note.numero_nota or ''} referente a <b>{note.description}</b> "
        f"(projeto {note.project_title}, conta {note.project_account_number}).</p>"
        f"<p>O prazo para atesto é {_fmt_date(note.attestation_deadline)}.</p>"
        f"<p><a href=\"{link}\">Clique aqui para atestar ou rejeitar a nota</a>.</p>"
    )
    mailer.send(note.coordinator_email, subject, body, cc=cc, attachment=attachment)


def send_attestation_confirmation(mailer: Mailer, *, note, coordinator_name: str,
                                  coordinator_email: str, requester_email: Optional[str],
                                  file_name: str, attested_at: datetime,
                                  observation: Optional[str] = None) -> None:
    subject = f"Confirmação de atesto: {note.description}"
    body = (
        f"<p>Olá {coordinator_name},</p>"
        f"<p>A nota fiscal {note.numero_nota or ''} (<b>{note.description}</b>, conta "
        f"{note.project_account_number}) foi atestada em {_fmt_date(attested_at)}.</p>"
        f"<p>Documento de atesto: {file_name}</p>"
    )
    if observation:
        body += f"<p>Observação: {observation}</p>"
    cc = [requester_email] if requester_email else []
    mailer.send(coordinator_email, subject, body, cc=cc)


def send_rejection_notification(mailer: Mailer, *, note, coordinator_name: str,
                                requester_name: str, requester_email: str, reason: str,
                                rejected_at: datetime) -> None:
    subject = f"Nota fiscal rejeitada: {note.description}"
    body = (
        f"<p>Olá {requester_name},</p>"
        f"<p>A nota fiscal {note.numero_nota or ''} (<b>{note.description}</b>, conta "
        f"{note.project_account_number}) foi rejeitada por {coordinator_name} "
        f"em {_fmt_date(rejected_at)}.</p>"
        f"<p>Motivo: {reason}</p>"
    )
    mailer.send(requester_email, subject, body)
