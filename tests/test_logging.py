import logging

from site_auth.core.logging import SecretRedactingFilter, redact_sensitive_text


def test_redacts_codes_and_tokens_in_urls() -> None:
    text = (
        "GET https://app.example/api/oauth/callback?code=4/0Abc-xyz&state=s1 "
        "Authorization: Bearer ya29.a0AfH6SM"
    )

    redacted = redact_sensitive_text(text)

    assert "4/0Abc-xyz" not in redacted
    assert "ya29.a0AfH6SM" not in redacted
    assert "code=[REDACTED]" in redacted
    assert "state=s1" in redacted


def test_redacts_bare_google_tokens() -> None:
    redacted = redact_sensitive_text("stored ya29.secret and 1//0refresh-token")

    assert redacted == "stored [REDACTED_ACCESS_TOKEN] and [REDACTED_REFRESH_TOKEN]"


def test_filter_rewrites_formatted_record() -> None:
    record = logging.LogRecord(
        name="httpx",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="POST %s refresh_token=%s",
        args=("https://oauth2.googleapis.com/token", "1//abc"),
        exc_info=None,
    )

    assert SecretRedactingFilter().filter(record) is True
    assert record.getMessage() == (
        "POST https://oauth2.googleapis.com/token refresh_token=[REDACTED]"
    )


def test_filter_leaves_plain_records_untouched() -> None:
    record = logging.LogRecord(
        name="site_auth",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="Listed %s %s resources",
        args=(3, "ga4"),
        exc_info=None,
    )

    SecretRedactingFilter().filter(record)

    assert record.args == (3, "ga4")
