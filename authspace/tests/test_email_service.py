from authspace.services import email_service


class FakeSMTP:
    instances: list["FakeSMTP"] = []

    def __init__(self, host, port, timeout=None):
        self.host = host
        self.port = port
        self.sent = []
        self.started_tls = False
        FakeSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def ehlo(self):
        pass

    def starttls(self, context=None):
        self.started_tls = True

    def login(self, username, password):
        pass

    def send_message(self, msg):
        self.sent.append(msg)


def test_send_invitation_builds_multipart_message(monkeypatch):
    FakeSMTP.instances.clear()
    monkeypatch.setattr(email_service.smtplib, "SMTP", FakeSMTP)

    message_id = email_service.send_invitation("new@example.com", "https://x/signup/?token=t")

    (smtp,) = FakeSMTP.instances
    (msg,) = smtp.sent
    assert msg["To"] == "new@example.com"
    assert msg["Message-ID"] == message_id
    assert "https://x/signup/?token=t" in msg.get_body(("plain",)).get_content()
    assert msg.get_body(("html",)) is not None
    assert not smtp.started_tls


def test_send_password_changed_is_plain_text(monkeypatch):
    FakeSMTP.instances.clear()
    monkeypatch.setattr(email_service.smtplib, "SMTP", FakeSMTP)

    email_service.send_password_changed("user@example.com")

    (msg,) = FakeSMTP.instances[0].sent
    assert "user@example.com" in msg.get_content()
    assert msg["Subject"] == "[authspace] Password changed"
