from feedpipe.text_utils import decode_entities, first_content_image, is_usable_image, strip_html, truncate


def test_decode_entities_named_and_numeric():
    assert decode_entities("Tom &amp; Jerry") == "Tom & Jerry"
    assert decode_entities("&lt;b&gt; &quot;hi&quot; &apos;x&apos;") == "<b> \"hi\" 'x'"
    assert decode_entities("caf&#233; &#x2014; ok") == "café — ok"


def test_decode_entities_leaves_unknown_references():
    assert decode_entities("&bogus; stays") == "&bogus; stays"
    assert decode_entities(None) is None


def test_strip_html_drops_tags_scripts_and_collapses_space():
    html = "<p>Hello <b>world</b></p>\n<script>alert(1)</script><style>p{}</style>  bye&nbsp;now"
    assert strip_html(html) == "Hello world bye now"


def test_truncate_cuts_on_word_boundary():
    text = "The quick brown fox jumps over the lazy dog"
    out = truncate(text, 18)
    assert out == "The quick brown..."
    assert len(out) <= 18 + 3


def test_truncate_keeps_short_text_unchanged():
    assert truncate("short", 10) == "short"
    assert truncate(None, 10) is None


def test_is_usable_image_skips_chrome_and_data_urls():
    assert is_usable_image("https://cdn.example.com/photo.jpg")
    assert not is_usable_image("data:image/png;base64,AAAA")
    assert not is_usable_image("https://example.com/static/logo.png")
    assert not is_usable_image("https://example.com/u/avatar_42.png")
    assert not is_usable_image(None)


def test_first_content_image_picks_first_usable():
    html = '<img src="https://example.com/icon.png"><p>x</p><img src="https://example.com/hero.jpg">'
    assert first_content_image(html) == "https://example.com/hero.jpg"
    assert first_content_image("<p>no images</p>") is None


def test_decode_entities_html5_named_references():
    assert decode_entities("Caf&eacute; &mdash; it&rsquo;s here&hellip;") == "Café — it’s here…"


def test_decode_entities_joins_surrogate_pairs():
    assert decode_entities("Party &#55357;&#56832; time") == "Party \U0001F600 time"
    assert decode_entities("&#xD83D;&#xDE00;") == "\U0001F600"


def test_decode_entities_lone_surrogate_is_replaced():
    out = decode_entities("bad &#55357; ref")
    assert out == "bad � ref"
    out.encode("utf-8")
