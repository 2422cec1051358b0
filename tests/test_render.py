# csp-pretty/tests/test_render.py
import io

import pytest

from csp_pretty.csp_pretty import JsonRenderer, Layout, Policy, TextRenderer, make_console, parse, render


def test_render_plain_auto_layout():
    """One value stays on the directive line, several values get a line each."""
    policy = parse("default-src 'self'; script-src 'unsafe-inline' https://cdn.example.com")
    assert render(policy, color=False) == (
        "default-src 'self';\n"
        "script-src\n"
        "  'unsafe-inline'\n"
        "  https://cdn.example.com"
    )


def test_render_directive_without_values():
    assert render(parse("upgrade-insecure-requests"), color=False) == "upgrade-insecure-requests"


def test_render_multiline_layout():
    policy = parse("default-src 'self'; upgrade-insecure-requests")
    assert render(policy, layout=Layout.MULTI, color=False) == "default-src\n  'self';\nupgrade-insecure-requests"


def test_render_single_line_layout():
    policy = parse("script-src 'self' 'unsafe-inline'; img-src data:")
    assert render(policy, layout=Layout.SINGLE, color=False) == "script-src 'self' 'unsafe-inline';\nimg-src data:"


def test_render_empty_policy():
    assert render(Policy(), color=False) == ""


def test_tokens_are_not_interpreted_as_markup():
    assert render(parse("img-src [red]x[/red] :smile:"), color=False) == "img-src\n  [red]x[/red]\n  :smile:"


@pytest.mark.parametrize(
    "token, sgr",
    [
        ("'unsafe-inline'", "\x1b[31m"),
        ("'self'", "\x1b[32m"),
        ("'sha256-'", "\x1b[30;41m"),
    ],
)
def test_render_colors_by_classification(token, sgr):
    out = render(parse(f"script-src {token}"))
    assert f"{sgr}{token}\x1b[0m" in out


def test_render_directive_name_is_bold_and_neutral_is_plain():
    out = render(parse("sandbox allow-scripts"))
    assert "\x1b[1msandbox\x1b[0m" in out
    assert out.endswith(" allow-scripts")


def test_color_never_changes_classification():
    policy = parse("script-src 'self' 'unsafe-eval' 'nonce-' foo")
    plain = render(policy, color=False)
    colored = render(policy, color=True)
    assert "\x1b[" not in plain
    assert plain != colored
    assert [v.classification for v in policy.directives[0].classified()] == [
        v.classification for v in parse(plain.replace("\n", " ")).directives[0].classified()
    ]


def test_text_renderer_separates_policies_with_blank_line():
    buf = io.StringIO()
    console = make_console("never", file=buf)
    printed = TextRenderer().print_many(console, [parse("object-src 'none'"), Policy(), parse("default-src 'self'")])
    assert printed == 2
    assert buf.getvalue() == "object-src 'none'\n\ndefault-src 'self'\n"


def test_json_renderer():
    policy = parse("script-src 'self' https:; upgrade-insecure-requests")
    assert JsonRenderer.policy_to_dict(policy) == {
        "directives": [
            {
                "name": "script-src",
                "values": [
                    {"value": "'self'", "classification": "safe"},
                    {"value": "https:", "classification": "unsafe"},
                ],
            },
            {"name": "upgrade-insecure-requests", "values": []},
        ]
    }
