from portfolio_cms.services.rendering import estimate_read_time, render_markdown, render_page


def test_render_markdown_tables_and_code():
    html = render_markdown("| a | b |\n|---|---|\n| 1 | 2 |\n\n```\ncode\n```")
    assert "<table>" in html
    assert "<code>" in html


def test_render_markdown_handles_none():
    assert render_markdown(None) == ""


def test_read_time_minimum_is_one_minute():
    assert estimate_read_time("") == "1 min read"


def test_read_time_ignores_markup():
    # Image URLs and syntax are not words
    content = "![alt](https://example.com/" + "a/" * 500 + "x.png)\n\n" + "word " * 200
    assert estimate_read_time(content, words_per_minute=200) == "1 min read"


def test_read_time_rounds_up():
    assert estimate_read_time("word " * 201, words_per_minute=200) == "2 min read"


def test_page_prefers_seo_overrides():
    page = render_page(
        title="Title",
        description="Desc",
        body_html="<p>hi</p>",
        image="https://img/main.png",
        meta_title="Meta",
        meta_description="Meta desc",
    )
    assert "<title>Meta</title>" in page
    assert 'name="description" content="Meta desc"' in page
    assert 'property="og:image" content="https://img/main.png"' in page
    assert "<h1>Title</h1>" in page


def test_page_without_image_has_no_og_image():
    page = render_page(title="T", description="D", body_html="")
    assert "og:image" not in page
