import copy

from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from Rehome.reconcile import link_post_tags


def _dataset():
    return {
        "tags": [
            {"id": 1, "name": "news", "slug": "news"},
            {"id": 2, "name": "news", "slug": "news-2"},
            {"id": 3, "name": "tech", "slug": "tech"},
        ],
        "posts": [
            {"id": 10, "title": "First"},
            {"id": 11, "title": "Second"},
        ],
        "posts_tags": [
            {"post_id": 10, "tag_id": 3},
            {"post_id": 10, "tag_id": 1},
            {"post_id": 10, "tag_id": 2},
        ],
    }


def test_duplicate_names_collapse_and_keep_join_order():
    out = link_post_tags(_dataset())
    first = out["posts"][0]
    assert first["tags"] == [{"name": "tech"}, {"name": "news"}]


def test_posts_without_links_are_untouched():
    out = link_post_tags(_dataset())
    assert "tags" not in out["posts"][1]


def test_input_dataset_is_not_modified():
    data = _dataset()
    before = copy.deepcopy(data)
    link_post_tags(data)
    assert data == before


def test_links_to_unknown_posts_and_tags_are_ignored():
    data = _dataset()
    data["posts_tags"] = [
        {"post_id": 99, "tag_id": 1},
        {"post_id": 11, "tag_id": 42},
        {"post_id": 11, "tag_id": 1},
    ]
    out = link_post_tags(data)
    assert out["posts"][1]["tags"] == [{"name": "news"}]
    assert len(out["posts"]) == 2


def test_ids_compare_by_string_form():
    data = _dataset()
    data["posts_tags"] = [{"post_id": "11", "tag_id": "3"}]
    out = link_post_tags(data)
    assert out["posts"][1]["tags"] == [{"name": "tech"}]


def test_missing_tables_are_tolerated():
    assert link_post_tags({"posts": [{"id": 1}]}) == {"posts": [{"id": 1}]}


tag_name = st.sampled_from(["news", "tech", "life", "misc"])


@settings(max_examples=50, suppress_health_check=[HealthCheck.function_scoped_fixture])
@given(
    tag_names=st.lists(tag_name, min_size=1, max_size=6),
    links=st.lists(st.tuples(st.integers(1, 3), st.integers(0, 7)), max_size=15),
)
def test_linked_names_are_unique_and_follow_first_mention(tag_names, links):
    tags = [{"id": i, "name": n, "slug": f"{n}-{i}"} for i, n in enumerate(tag_names)]
    posts = [{"id": i, "title": f"p{i}"} for i in (1, 2, 3)]
    posts_tags = [{"post_id": p, "tag_id": t} for p, t in links]

    out = link_post_tags({"tags": tags, "posts": posts, "posts_tags": posts_tags})

    for post in out["posts"]:
        expected: list[str] = []
        for p, t in links:
            if p == post["id"] and t < len(tag_names) and tag_names[t] not in expected:
                expected.append(tag_names[t])
        if any(p == post["id"] for p, _ in links):
            assert [ref["name"] for ref in post["tags"]] == expected
        else:
            assert "tags" not in post
