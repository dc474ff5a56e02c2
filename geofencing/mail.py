#!/usr/bin/env python3
"""
Mail double opt-in workflow and SMTP transport.

An address moves Unknown -> OnHold(requested_at) -> Confirmed. Mail events
only deliver to confirmed addresses, so no automated mail reaches an address
whose owner never clicked the verification link.
"""
from __future__ import annotations

import re
import smtplib
import time
from email.mime.text import MIMEText
from email.utils import formataddr, parseaddr
from typing import Callable, List, Optional

from sqlalchemy import select

from .config import SystemConfiguration
from .db import Database
from .exceptions import ConfigurationError, InvalidAddressError, MailError, NotFoundError
from .logging_config import get_logger
from .models import AddressOnHold, ConfirmedAddress

logger = get_logger()

SERVICE_URL = "service_url"
MAIL_HOST = "mail_host"
MAIL_PORT = "mail_port"
MAIL_ENCRYPT_METHOD = "mail_encrypt_method"
MAIL_USERNAME = "mail_username"
MAIL_PASSWORD = "mail_password"
SENDER_ADDRESS = "sender_address"
SENDER_NAME = "sender_name"
CONFIRMATION_TIMEOUT = "confirmation_timeout"
DELETE_TIMEOUT = "delete_timeout"

MAIL_KEYS = (
    SERVICE_URL, MAIL_HOST, MAIL_PORT, MAIL_ENCRYPT_METHOD, MAIL_USERNAME,
    MAIL_PASSWORD, SENDER_ADDRESS, SENDER_NAME, CONFIRMATION_TIMEOUT, DELETE_TIMEOUT,
)

_ADDRESS_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def validate_address(address: Optional[str]) -> str:
    """Return the bare address or raise InvalidAddressError."""
    if not address:
        raise InvalidAddressError(str(address))
    _, parsed = parseaddr(address)
    if parsed != address.strip() or not _ADDRESS_RE.match(parsed):
        raise InvalidAddressError(address)
    return parsed


def generate_mail_config(config: SystemConfiguration):
    """Add every mail key to the configuration file as an empty template entry."""
    try:
        config.ensure_keys(MAIL_KEYS)
        logger.warning("Added mail configuration template", "MAIL")
    except ConfigurationError as e:
        logger.error("Could not add mail configuration template", "MAIL", e)


class MailRegistry:
    """Persisted on-hold and confirmed addresses."""

    def __init__(self, db: Database, config: SystemConfiguration, clock: Callable[[], float] = time.time):
        self.db = db
        self.config = config
        self.clock = clock

    def _timeout(self, key: str) -> int:
        try:
            return self.config.get_int(key)
        except ConfigurationError as e:
            if e.needs_template:
                generate_mail_config(self.config)
            raise

    def add_address_on_hold(self, recipient: str) -> bool:
        """Start a verification request.

        Returns False while an unexpired request for the address is pending.
        """
        address = validate_address(recipient)
        if self.is_mail_address_confirmed(address):
            return True
        confirmation_timeout = self._timeout(CONFIRMATION_TIMEOUT)
        try:
            on_hold = self.find_mail_on_hold(address)
            if self.clock() - on_hold.requested_at < confirmation_timeout:
                return False
            self.remove_on_hold_mail(address)
        except NotFoundError:
            pass
        self._insert_on_hold_mail(address)
        logger.info(f"Address {address} on hold for verification", "MAIL")
        return True

    def confirm_mailaddress(self, recipient: str) -> bool:
        """Confirm a pending address; False if the request expired."""
        address = validate_address(recipient)
        if self.is_mail_address_confirmed(address):
            return True
        on_hold = self.find_mail_on_hold(address)
        confirmation_timeout = self._timeout(CONFIRMATION_TIMEOUT)
        if self.clock() - on_hold.requested_at < confirmation_timeout:
            with self.db.session_scope() as s:
                s.add(ConfirmedAddress(address=address))
                pending = s.get(AddressOnHold, address)
                if pending is not None:
                    s.delete(pending)
            logger.info(f"Address {address} confirmed", "MAIL")
            return True
        logger.info(f"Verification attempt for {address} expired", "MAIL")
        return False

    def unregister_mailaddress(self, recipient: str) -> bool:
        address = validate_address(recipient)
        with self.db.session_scope() as s:
            confirmed = s.get(ConfirmedAddress, address)
            if confirmed is None:
                raise NotFoundError(f"Mail address {address}")
            s.delete(confirmed)
        logger.info(f"Address {address} unsubscribed", "MAIL")
        return True

    def find_mail_on_hold(self, recipient: str) -> AddressOnHold:
        self.remove_expired_from_on_hold()
        with self.db.session_scope() as s:
            on_hold = s.get(AddressOnHold, recipient)
            if on_hold is None:
                raise NotFoundError(f"Address on hold {recipient}")
            return on_hold

    def is_mail_address_confirmed(self, address: str) -> bool:
        with self.db.session_scope() as s:
            return s.get(ConfirmedAddress, address) is not None

    def find_confirmed_addresses(self) -> List[str]:
        with self.db.session_scope() as s:
            return list(s.scalars(select(ConfirmedAddress.address).order_by(ConfirmedAddress.address)).all())

    def _insert_on_hold_mail(self, address: str):
        with self.db.session_scope() as s:
            s.add(AddressOnHold(address=address, requested_at=self.clock()))

    def remove_on_hold_mail(self, recipient: str) -> bool:
        with self.db.session_scope() as s:
            on_hold = s.get(AddressOnHold, recipient)
            if on_hold is None:
                raise NotFoundError(f"Mail address {recipient}")
            s.delete(on_hold)
        return True

    def remove_expired_from_on_hold(self) -> int:
        """Delete every on-hold entry older than the delete timeout."""
        delete_timeout = self._timeout(DELETE_TIMEOUT)
        cutoff = self.clock() - delete_timeout
        with self.db.session_scope() as s:
            expired = list(s.scalars(select(AddressOnHold).where(AddressOnHold.requested_at < cutoff)).all())
            for on_hold in expired:
                s.delete(on_hold)
        if expired:
            logger.debug(f"Purged {len(expired)} expired verification requests", "MAIL")
        return len(expired)


class SmtpMailTransport:
    """Sends plain-text mail through the configured SMTP server."""

    def __init__(self, config: SystemConfiguration, timeout: float = 10.0):
        self.config = config
        self.timeout = timeout

    def _connect(self) -> smtplib.SMTP:
        host = self.config.get_value(MAIL_HOST)
        port = self.config.get_int(MAIL_PORT)
        method = self.config.get_value(MAIL_ENCRYPT_METHOD).upper()
        if method == "SSL":
            return smtplib.SMTP_SSL(host, port, timeout=self.timeout)
        server = smtplib.SMTP(host, port, timeout=self.timeout)
        if method == "TLS":
            server.starttls()
        return server

    def send(self, recipient: str, subject: str, body: str) -> bool:
        try:
            username = self.config.get_value(MAIL_USERNAME)
            password = self.config.get_value(MAIL_PASSWORD)
            sender = formataddr((self.config.get_value(SENDER_NAME), self.config.get_value(SENDER_ADDRESS)))

            msg = MIMEText(body, "plain", "utf-8")
            msg['Subject'] = subject
            msg['From'] = sender
            msg['To'] = recipient

            server = self._connect()
            try:
                server.login(username, password)
                server.send_message(msg)
            finally:
                server.quit()
            logger.info(f"Mail '{subject}' sent to {recipient}", "MAIL")
            return True
        except ConfigurationError as e:
            if e.needs_template:
                generate_mail_config(self.config)
            logger.error("Mail configuration incomplete", "MAIL", e)
            raise MailError(str(e)) from e
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Sending mail to {recipient} failed", "MAIL", e)
            raise MailError(str(e)) from e


class MailInterface:
    """Verification mails and delivery to confirmed recipients."""

    def __init__(self, config: SystemConfiguration, registry: MailRegistry, transport=None):
        self.config = config
        self.registry = registry
        self.transport = transport or SmtpMailTransport(config)

    def send(self, recipient: str, subject: str, text: str) -> bool:
        return self.transport.send(recipient, subject, text)

    def send_to_confirmed_recipient(self, recipient: str, subject: str, text: str) -> bool:
        """Send only when recipient completed the opt-in; otherwise a logged no-op."""
        address = validate_address(recipient)
        if not self.registry.is_mail_address_confirmed(address):
            logger.info(f"Mail to {address} skipped - address not confirmed", "MAIL")
            return False
        return self.send(address, subject, text)

    def send_verification_mail(self, recipient: str, subject: str, verification_text: str) -> bool:
        if not self.registry.add_address_on_hold(recipient):
            logger.info(f"Verification for {recipient} already pending", "MAIL")
            return False
        try:
            return self.send(recipient, subject, verification_text)
        except MailError:
            try:
                self.registry.remove_on_hold_mail(recipient)
            except NotFoundError:
                pass
            raise

    def send_default_verification_mail(self, recipient: str) -> bool:
        """Start the opt-in for recipient; confirmed addresses need no new mail."""
        address = validate_address(recipient)
        if self.registry.is_mail_address_confirmed(address):
            return True
        try:
            minutes = self.config.get_int(CONFIRMATION_TIMEOUT) // 60
            text = (
                f"Please click the following link to verify your mail address ({address}):\n\n\n"
                f"{self.get_verification_link(address)}\n\n\n"
                f"This link expires in {minutes} minutes"
                f"\n\n Unsubscribe here: {self.get_unsubscribe_link(address)}"
            )
        except ConfigurationError as e:
            if e.needs_template:
                generate_mail_config(self.config)
            raise
        return self.send_verification_mail(address, "E-Mail Verification Request", text)

    def get_service_url(self) -> str:
        url = self.config.get_value(SERVICE_URL)
        if not url.endswith("/"):
            url += "/"
        return url

    def get_verification_link(self, recipient: str) -> str:
        return f"{self.get_service_url()}verification/{recipient}"

    def get_unsubscribe_link(self, recipient: str) -> str:
        return f"{self.get_service_url()}unsubscribe/{recipient}"
