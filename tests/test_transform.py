import pytest

from readwise_mirror.sync import ContentTransformer, ImageFetcher, fix_corrupted_url
from readwise_mirror.sync.transform import (
    decode_entities,
    encoded_size,
    extract_larger_images,
    select_image_source,
)

from fakes import FakeFetcher, FakeImageSession, FakeResponse, make_doc


@pytest.mark.parametrize(
    "url, expected",
    [
        ("https://a.com/x%3A%2F%2Fy.png", "https://a.com/x://y.png"),
        ("https://a.com/img%2fsmall.png", "https://a.com/img/small.png"),
        ("https://a.com/my%2520file.png", "https://a.com/my%20file.png"),
        ("https://a.com/my%20file.png", "https://a.com/my%20file.png"),
        ("https://a.com/a%252Fb.png", "https://a.com/a/b.png"),
        ("https://a.com/a%25252Fb.png", "https://a.com/a/b.png"),
        ("https://a.com/img.png#section", "https://a.com/img.png"),
        ("https://a.com/img.png%23frag", "https://a.com/img.png"),
        ("https://a.com/img.png%2523frag", "https://a.com/img.png"),
        ("https://a.com/w_100%2Cc_fill%24%21.png", "https://a.com/w_100,c_fill$!.png"),
        ("https://a.com/p%3Fq%3D1%26r%3D2", "https://a.com/p?q=1&r=2"),
        ("https://a.com/%28x%29%5Bb%5D%7Bc%7D", "https://a.com/(x)[b]{c}"),
        ("https://a.com/%2B%40%7C%5E%60%7E%5C", "https://a.com/+@|^`~\\"),
        ("https://a.com/caf%C3%A9.png", "https://a.com/caf%C3%A9.png"),
        ("https://a.com/plain.png", "https://a.com/plain.png"),
        (
            "https://proxy.example.com/img?url=https%3A%2F%2Fimages.example.com%2Fphotos%2Fa.png",
            "https://images.example.com/photos/a.png",
        ),
        (
            "https://cdn.example.com/fetch/fl_progressive:steep/https%3A%2F%2Fmedia.example.com%2Fb.jpeg",
            "https://cdn.example.com/fetch/fl_progressive:steep/https://media.example.com/b.jpeg",
        ),
    ],
)
def test_fix_corrupted_url(url, expected):
    assert fix_corrupted_url(url) == expected


def test_decode_entities_handles_the_four_standard_entities():
    assert decode_entities("&lt;p&gt;Tom &amp; &quot;Jerry&quot;&lt;/p&gt;") == '<p>Tom & "Jerry"</p>'
    assert decode_entities("&#39;untouched&#39;") == "&#39;untouched&#39;"


@pytest.mark.parametrize(
    "picture, expected",
    [
        (
            '<source srcset="https://a.com/s.jpg 400w, https://a.com/m.jpg 1000w, https://a.com/l.jpg 2000w">'
            '<img src="https://a.com/fallback.jpg" alt="Cat">',
            "https://a.com/m.jpg",
        ),
        (
            '<source srcset="https://a.com/s.jpg 400w,https://a.com/xl.jpg 1200w">',
            "https://a.com/xl.jpg",
        ),
        (
            '<source srcset="https://a.com/i.jpg?width=800, https://a.com/i.jpg?width=1600">',
            "https://a.com/i.jpg?width=800",
        ),
        (
            '<source srcset="https://a.com/huge.jpg 3000w"><img src="https://a.com/fallback.jpg">',
            "https://a.com/fallback.jpg",
        ),
        ('<img src="https://a.com/only.jpg" alt="">', "https://a.com/only.jpg"),
        ("<source>", None),
    ],
)
def test_select_image_source(picture, expected):
    assert select_image_source(picture) == expected


def test_extract_larger_images_keeps_caption_in_figure():
    content = (
        '<figure class="x"><picture><source srcset="https://a.com/m.jpg 800w">'
        '<img src="https://a.com/f.jpg" alt="Dog"></picture><figcaption>A dog</figcaption></figure>'
    )

    assert extract_larger_images(content) == (
        '<figure><img src="https://a.com/m.jpg" alt="Dog" /><figcaption>A dog</figcaption></figure>'
    )


def test_extract_larger_images_drops_blank_caption_and_bare_pictures():
    content = (
        '<figure><picture><img src="https://a.com/1.jpg" alt="One"></picture>  </figure>'
        '<p>text</p><picture><source srcset="https://a.com/2.jpg 600w"></picture>'
    )

    assert extract_larger_images(content) == (
        '<img src="https://a.com/1.jpg" alt="One" /><p>text</p><img src="https://a.com/2.jpg" alt="" />'
    )


def test_images_are_inlined_until_budget_then_all_become_placeholders():
    fetcher = FakeFetcher(
        {
            "https://a.com/1.png": 500,
            "https://a.com/2.png": 200,
            "https://a.com/3.png": 100,
            "https://a.com/4.png": 10,
        }
    )
    transformer = ContentTransformer(fetcher=fetcher, max_image_bytes=1000)
    body = "".join(f'<img src="https://a.com/{i}.png" alt="pic {i}">' for i in range(1, 5))

    result = transformer.inline_images(body)

    assert result.count("data:image/png;base64,") == 2
    assert result.count("Size limit reached") == 2
    assert "Source: https://a.com/3.png" in result
    assert "Source: https://a.com/4.png" in result
    assert "https://a.com/4.png" not in fetcher.requested
    assert encoded_size(500) + encoded_size(200) <= 1000


def test_fetch_failure_uses_placeholder_without_stopping():
    fetcher = FakeFetcher({"https://a.com/ok.png": 10})
    transformer = ContentTransformer(fetcher=fetcher, max_image_bytes=1000)

    result = transformer.inline_images(
        '<img src="https://a.com/missing.png" alt="Gone"><img src="https://a.com/ok.png">'
    )

    assert 'class="image-placeholder">Image: Gone' in result
    assert "Size limit reached" not in result
    assert result.count("data:image/png;base64,") == 1


def test_data_uris_and_relative_sources_are_left_alone():
    fetcher = FakeFetcher()
    transformer = ContentTransformer(fetcher=fetcher)
    body = '<img src="data:image/gif;base64,R0lGOD" alt="dot"><img src="/local.png">'

    assert transformer.inline_images(body) == body
    assert fetcher.requested == []


def test_disabled_image_download_renders_placeholders():
    fetcher = FakeFetcher({"https://a.com/1.png": 10})
    transformer = ContentTransformer(fetcher=fetcher, download_images=False)

    result = transformer.inline_images('<img src="https://a.com/1.png" alt="One">')

    assert "image-placeholder" in result
    assert fetcher.requested == []


def test_linked_full_size_image_is_preferred():
    fetcher = FakeFetcher({"https://a.com/full.jpg": 20, "https://a.com/thumb.jpg": 5}, mime_type="image/jpeg")
    transformer = ContentTransformer(fetcher=fetcher)

    result = transformer.inline_images(
        '<a href="https://a.com/full.jpg"><img src="https://a.com/thumb.jpg" alt="Big"></a>'
    )

    assert fetcher.requested == ["https://a.com/full.jpg"]
    assert result.startswith('<a href="#">')
    assert "data:image/jpeg;base64," in result


def test_corrupted_image_url_is_repaired_before_fetch():
    fetcher = FakeFetcher({"https://a.com/x/y.png": 10})
    transformer = ContentTransformer(fetcher=fetcher)

    transformer.inline_images('<img src="https://a.com/x%2Fy.png">')

    assert fetcher.requested == ["https://a.com/x/y.png"]


def test_transform_builds_full_page():
    transformer = ContentTransformer(fetcher=FakeFetcher())
    document = make_doc("d1", title="Cats & Dogs", author="Ann", html_content="&lt;p&gt;Hello&lt;/p&gt;")

    page = transformer.transform(document)

    assert page.startswith("<!DOCTYPE html>")
    assert "<title>Cats &amp; Dogs</title>" in page
    assert "<em>Ann</em>" in page
    assert "<p>Hello</p>" in page


def test_transform_falls_back_to_summary_page():
    transformer = ContentTransformer(fetcher=FakeFetcher())
    document = make_doc("d2", html_content=None, source_url="https://example.com/post", summary="Short summary")

    page = transformer.transform(document)

    assert "Full content was not available" in page
    assert 'href="https://example.com/post"' in page
    assert "Short summary" in page


def test_image_fetcher_reads_mime_type_and_rejects_failures():
    session = FakeImageSession(
        {
            "https://a.com/ok.webp": FakeResponse(200, content=b"abc", headers={"Content-Type": "image/webp; q=1"}),
            "https://a.com/404.png": FakeResponse(404, content=b"nope"),
            "https://a.com/empty.png": FakeResponse(200, content=b""),
        }
    )
    fetcher = ImageFetcher(session=session)

    image = fetcher.fetch("https://a.com/ok.webp")
    assert image.mime_type == "image/webp"
    assert image.data_uri() == "data:image/webp;base64,YWJj"
    assert fetcher.fetch("https://a.com/404.png") is None
    assert fetcher.fetch("https://a.com/empty.png") is None
    assert fetcher.fetch("https://a.com/down.png") is None
