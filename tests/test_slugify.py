from __future__ import annotations

from media_store.slugify import slugify, slugify_filename, transliterate


def test_transliterate_keeps_case() -> None:
    assert transliterate("Привет") == "Privet"
    assert transliterate("abc") == "abc"


def test_slugify_collapses_separators() -> None:
    assert slugify("  Hello   World!!  ") == "hello-world"
    assert slugify("a--b__c") == "a-b-c"


def test_slugify_filename_keeps_extension() -> None:
    assert slugify_filename("Мой Файл (1).PNG") == "moy-fayl-1.png"
    assert slugify_filename("../../etc/passwd") == "passwd"
    assert slugify_filename("no_ext") == "no-ext"
    assert slugify_filename("???.jpg") == "file.jpg"
