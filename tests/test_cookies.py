from agent_browser_tool.fetch.cookies import CookieJar, split_set_cookie_header


def test_split_set_cookie_keeps_expires_dates_intact() -> None:
    header = "a=1; Path=/; Expires=Wed, 21 Oct 2037 07:28:00 GMT, b=2; HttpOnly"

    assert split_set_cookie_header(header) == [
        "a=1; Path=/; Expires=Wed, 21 Oct 2037 07:28:00 GMT",
        "b=2; HttpOnly",
    ]


def test_jar_scopes_host_only_and_domain_cookies() -> None:
    jar = CookieJar()
    jar.update_from_headers(
        ["session=abc; Path=/; HttpOnly", "pref=dark; Domain=.example.com"],
        "https://www.example.com/login",
    )

    assert jar.as_dict() == {"session": "abc", "pref": "dark"}
    assert jar.header_for("https://www.example.com/home") == "session=abc; pref=dark"
    assert jar.header_for("https://api.example.com/") == "pref=dark"
    assert jar.header_for("https://other.test/") is None


def test_jar_scopes_each_redirect_hop_to_its_own_host() -> None:
    jar = CookieJar()
    jar.update_from_responses(
        [
            ("https://auth.test/session", "sid=secret"),
            ("https://tracker.test/land", "sid=track; Domain=evil.test"),
            ("https://tracker.test/land", "visit=1"),
        ]
    )

    assert len(jar) == 2
    assert jar.header_for("https://auth.test/") == "sid=secret"
    assert jar.header_for("https://tracker.test/") == "visit=1"


def test_jar_drops_expired_cookies() -> None:
    jar = CookieJar()
    jar.update_from_headers(["session=abc"], "https://example.com/")
    jar.update_from_headers(["session=; Max-Age=0"], "https://example.com/")
    jar.update_from_headers(["old=1; Expires=Thu, 01 Jan 1970 00:00:00 GMT"], "https://example.com/")

    assert len(jar) == 0


def test_replace_from_live_takes_context_cookies() -> None:
    jar = CookieJar()
    jar.update_from_headers(["stale=1"], "https://example.com/")

    jar.replace_from_live(
        [
            {"name": "sid", "value": "xyz", "domain": ".example.com"},
            {"name": "host", "value": "1", "domain": "example.com"},
            {"name": "", "value": "ignored"},
        ]
    )

    assert jar.as_dict() == {"sid": "xyz", "host": "1"}
    assert jar.header_for("https://sub.example.com/") == "sid=xyz"
