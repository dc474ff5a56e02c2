import pytest

from geofencing.exceptions import ConfigurationError, InvalidAddressError, MailError, NotFoundError
from geofencing.mail import MailInterface, MailRegistry, SmtpMailTransport, validate_address

ADDRESS = "coach@club.test"


@pytest.fixture
def registry(database, config, clock):
    return MailRegistry(database, config, clock=clock)


@pytest.fixture
def mail(config, registry, mail_transport):
    return MailInterface(config, registry, transport=mail_transport)


def test_validate_address():
    assert validate_address(ADDRESS) == ADDRESS
    for bad in ("", None, "coach", "coach@", "Coach <coach@club.test>", "a b@club.test"):
        with pytest.raises(InvalidAddressError):
            validate_address(bad)


def test_on_hold_twice_within_timeout(registry, clock):
    assert registry.add_address_on_hold(ADDRESS) is True
    clock.advance(599)
    assert registry.add_address_on_hold(ADDRESS) is False


def test_on_hold_again_after_timeout(registry, clock):
    assert registry.add_address_on_hold(ADDRESS)
    clock.advance(600)
    assert registry.add_address_on_hold(ADDRESS) is True
    assert registry.find_mail_on_hold(ADDRESS).requested_at == clock.now


def test_confirm_within_timeout(registry, clock):
    registry.add_address_on_hold(ADDRESS)
    clock.advance(300)
    assert registry.confirm_mailaddress(ADDRESS)
    assert registry.is_mail_address_confirmed(ADDRESS)
    with pytest.raises(NotFoundError):
        registry.find_mail_on_hold(ADDRESS)
    # confirmed addresses stay confirmed
    assert registry.add_address_on_hold(ADDRESS)
    assert registry.confirm_mailaddress(ADDRESS)


def test_confirm_after_timeout_fails(registry, clock):
    registry.add_address_on_hold(ADDRESS)
    clock.advance(601)
    assert registry.confirm_mailaddress(ADDRESS) is False
    assert not registry.is_mail_address_confirmed(ADDRESS)
    # stale record kept until the delete timeout
    assert registry.find_mail_on_hold(ADDRESS).address == ADDRESS


def test_confirm_counts_from_latest_request(registry, clock):
    registry.add_address_on_hold(ADDRESS)
    clock.advance(700)
    registry.add_address_on_hold(ADDRESS)
    clock.advance(500)
    assert registry.confirm_mailaddress(ADDRESS)


def test_confirm_unknown_address(registry):
    with pytest.raises(NotFoundError):
        registry.confirm_mailaddress(ADDRESS)


def test_expired_requests_are_purged(registry, clock):
    registry.add_address_on_hold(ADDRESS)
    registry.add_address_on_hold("cox@club.test")
    clock.advance(3601)
    assert registry.remove_expired_from_on_hold() == 2
    with pytest.raises(NotFoundError):
        registry.confirm_mailaddress(ADDRESS)


def test_unregister(registry):
    registry.add_address_on_hold(ADDRESS)
    registry.confirm_mailaddress(ADDRESS)
    assert registry.find_confirmed_addresses() == [ADDRESS]
    assert registry.unregister_mailaddress(ADDRESS)
    assert not registry.is_mail_address_confirmed(ADDRESS)
    with pytest.raises(NotFoundError):
        registry.unregister_mailaddress(ADDRESS)


def test_default_verification_mail(mail, mail_transport):
    assert mail.send_default_verification_mail(ADDRESS)
    recipient, subject, body = mail_transport.sent[0]
    assert recipient == ADDRESS
    assert subject == "E-Mail Verification Request"
    assert "http://geo.test/verification/coach@club.test" in body
    assert "http://geo.test/unsubscribe/coach@club.test" in body
    assert "10 minutes" in body


def test_verification_not_resent_while_pending(mail, mail_transport):
    assert mail.send_default_verification_mail(ADDRESS)
    assert mail.send_default_verification_mail(ADDRESS) is False
    assert len(mail_transport.sent) == 1


def test_failed_verification_mail_releases_address(mail, registry, mail_transport):
    mail_transport.fail = True
    with pytest.raises(MailError):
        mail.send_default_verification_mail(ADDRESS)
    with pytest.raises(NotFoundError):
        registry.find_mail_on_hold(ADDRESS)


def test_send_to_confirmed_recipient_only(mail, registry, mail_transport):
    assert mail.send_to_confirmed_recipient(ADDRESS, "Hi", "there") is False
    assert mail_transport.sent == []
    registry.add_address_on_hold(ADDRESS)
    registry.confirm_mailaddress(ADDRESS)
    assert mail.send_to_confirmed_recipient(ADDRESS, "Hi", "there")
    assert mail_transport.sent == [(ADDRESS, "Hi", "there")]


def test_missing_timeouts_write_mail_template(database, config, clock):
    values = config.load()
    del values["confirmation_timeout"]
    config.save(values)
    registry = MailRegistry(database, config, clock=clock)
    with pytest.raises(ConfigurationError):
        registry.add_address_on_hold(ADDRESS)
    assert config.load()["confirmation_timeout"] == ""


def test_smtp_transport_wraps_config_errors(config):
    config.set_value("mail_host", "")
    with pytest.raises(MailError):
        SmtpMailTransport(config).send(ADDRESS, "Hi", "there")
