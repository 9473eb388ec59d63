import pytest

from project_fusion.anchors import AnchorAllocator, normalize_slug


@pytest.mark.unit
@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("Hello World", "hello-world"),
        ("src/App.tsx", "srcapptsx"),
        ("a   b", "a-b"),
        ("my-file_name.py", "my-file_namepy"),
        ("Café.md", "cafémd"),
        ("", "file"),
        ("!!!", "file"),
    ],
)
def test_normalize_slug(raw: str, expected: str) -> None:
    assert normalize_slug(raw) == expected


@pytest.mark.unit
def test_repeated_slugs_get_counted_suffixes() -> None:
    anchors = AnchorAllocator()

    assert [anchors.slug("a") for _ in range(3)] == ["a", "a-1", "a-2"]


@pytest.mark.unit
def test_suffixes_are_counted_per_slug() -> None:
    anchors = AnchorAllocator()

    assert [anchors.slug(s) for s in ("a", "b", "a", "b")] == ["a", "b", "a-1", "b-1"]


@pytest.mark.unit
def test_suffix_skips_literal_names_already_issued() -> None:
    anchors = AnchorAllocator()

    assert [anchors.slug(s) for s in ("a-1", "a", "a")] == ["a-1", "a", "a-2"]


@pytest.mark.unit
def test_paths_normalizing_to_the_same_slug_stay_unique() -> None:
    anchors = AnchorAllocator()

    assert [anchors.slug(s) for s in ("a.js", "a/js", "ajs")] == ["ajs", "ajs-1", "ajs-2"]


@pytest.mark.unit
def test_reset_makes_allocation_deterministic() -> None:
    anchors = AnchorAllocator()
    paths = ["src/a.py", "src/a.py", "b.py"]

    first = [anchors.slug(p) for p in paths]
    anchors.reset()
    second = [anchors.slug(p) for p in paths]

    assert first == second == ["srcapy", "srcapy-1", "bpy"]
